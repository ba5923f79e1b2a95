"""
Prayer API Backend: API Routes Package
========================================

Route Inventory:
    - health.py:           GET    /health
    - topics.py:           GET    /api/prayer-topics
    - prayer_requests.py:  POST   /api/prayer-requests
                           GET    /api/prayer-requests
                           POST   /api/prayer-requests/{id}/join
                           POST   /api/prayer-requests/{id}/start-praying
                           POST   /api/prayer-requests/{id}/stop-praying
                           POST   /api/prayer-requests/{id}/pray           (legacy)
                           POST   /api/prayer-requests/{id}/complete
                           DELETE /api/prayer-requests/{id}/complete       (legacy)
    - maintenance.py:      GET    /api/stats
                           DELETE /api/cleanup-expired
                           POST   /api/reset-active-prayers
    - devices.py:          POST   /api/register-device
                           GET    /api/devices
                           GET    /api/device/{device_id}/prayers
                           GET    /api/device/{device_id}/info
    - notifications.py:    POST   /api/send-prayer-request
                           POST   /api/send-prayer-joined
                           POST   /api/send-daily-reminder
                           POST   /api/send-test-notification

Routes are thin: they extract request data, call one service method and
return its result. Rules live in the services.
"""
