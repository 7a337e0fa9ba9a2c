# Overlay network control-plane registry
#
# Provides:
#  - Monotonic virtual address allocation from a private block
#  - Thread-safe peer registry keyed by node id
#  - FastAPI binding exposing POST /join and GET /peers
#  - A reference node client that joins and greets its peers over UDP
#
# See overlay_controller/main.py for the server entry point.
