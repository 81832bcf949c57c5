# Routes package init
"""
Study Portal Backend — API Routes Package
===========================================

What:  HTTP route handlers that accept requests and return responses.
How:   Each route module handles one resource; all of them reach the storage
       layer through FastAPI dependencies (studyportal.dependencies).

Route Inventory:
    - documents.py: GET    /api/documents               (list, ?type= filter)
                    GET    /api/documents/{id}          (metadata)
                    GET    /api/documents/{id}/file     (PDF, ?download=true)
    - files.py:     GET    /uploads/{filename}          (PDF by stored name)
    - admin.py:     POST   /api/admin/documents         (upload)
                    DELETE /api/admin/documents/{id}    (delete)
    - stats.py:     GET    /api/stats/counts, GET|POST /api/stats/visits
    - database.py:  GET    /api/database/status, POST /api/database/reconnect
    - health.py:    GET    /api/health

Design Principle:
    Routes stay THIN: extract request data, call DocumentService, shape the
    response. Store routing and fallback live in the service layer.
"""
