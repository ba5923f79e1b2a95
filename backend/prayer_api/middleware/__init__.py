"""
Prayer API Backend: Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (request direction):
    Request → [Rate Limit] → [Request ID] → [Access Log] → [Security Headers]
            → [GZip] → [CORS] → Route Handler

    1. Rate limit first: abusive clients are rejected before any work
    2. Request ID: correlation id for every log line of the request
    3. Access log: method, path, status and duration, tagged with the id
    4. Security headers: the usual browser hardening headers on every response
"""
