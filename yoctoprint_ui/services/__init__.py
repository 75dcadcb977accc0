# Service layer for the Yoctoprint web UI
# - api_client:     HTTP client for the printer host REST API
# - status_poller:  self-refreshing status value (1 s cadence)
# - console_stream: WebSocket client for the printer console
