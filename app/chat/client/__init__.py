"""
Client side of the chat: reconciliation state and the session driving it.

Modules:
    state: Immutable timeline/room list values and the pure functions that
        merge fetched history, live pushes and optimistic sends
    session: ChatSession and the Transport protocol it talks through
    transport: LocalTransport, an in-process Transport over the services

The state module has no Django dependency beyond date parsing, so the same
rules can back any client that consumes the REST and WebSocket payloads.
"""
