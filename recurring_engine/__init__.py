"""
recurring_engine -- turns recurrence rules into Job and Invoice records,
exactly once per due occurrence.

Layers:
    domain    -- pure rule validation, occurrence calculation, state machine
    models    -- ORM persistence for schedules, items and execution history
    services  -- repository, claim coordinator, execution engine, sweep,
                 and the RecurringScheduleService facade
    api       -- FastAPI router for the inbound HTTP surface
"""
