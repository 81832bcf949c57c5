# Services package init
"""
Study Portal Backend — Services Package
=========================================

What:  Storage and business logic, independent of HTTP.

    sync_state.py          shared reachability flag and pending counters
    local_store.py         durable JSON snapshot (always available)
    primary_store.py       async SQLAlchemy client for the primary database
    reconciliation.py      pending local records → primary after an outage
    connection_monitor.py  periodic reconnect task, manual reconnect
    file_service.py        PDF validation, storage and cleanup
    document_service.py    unified access façade used by the routes
"""
