"""reqreply usage examples

Examples:
- 01_request_reply.py: Request/reply over the in-memory transport
- 02_timeouts_and_cancel.py: Deadlines, cancellation and typed failures
- 03_fan_out.py: Parallel requests collected in subject order
- 04_statistics.py: Transport, client and responder counters
- 05_responder_service.py: Demo responder on a NATS server
- 06_requester_service.py: FastAPI requester on a NATS server

Run:
    python examples/01_request_reply.py
    ...
"""
