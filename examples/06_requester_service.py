"""Requester Service on NATS

API Endpoints:
- POST /api/request/sync/{subject}
- POST /api/request/async/{subject}
- POST /api/request/custom-timeout/{subject}?timeoutMs=3000
- POST /api/request/parallel?subjects=order.process,user.validate
- GET  /api/request/stats

Requirements:
- NATS server running on localhost:4222
- The responder service (05_responder_service.py) running

Test with curl:
    curl -X POST "http://localhost:8000/api/request/sync/order.process" -d 'Order-1'
"""
import uvicorn

from reqreply.config import configure_logging
from reqreply.services import build_requester_app

configure_logging()
app = build_requester_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
