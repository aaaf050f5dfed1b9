"""
Allocation plan generation engine.

Turns "distribute N shipment events for carrier C and product P between D1
and D2" into dated, capacity-respecting origin→destination events:

  store.py       - ConfigurationStore: snapshot of config, topology and load
  temporal.py    - annual total → period count → ISO-week quotas
  spatial.py     - week quota → cities → destination nodes (+ deficits)
  routing.py     - origin node per placement, deterministic draws
  assembler.py   - draft plan header, detail rows, per-city breakdown
  reconciler.py  - atomic append/replace merge into shipment_events
  roundtrip.py   - export/re-import of edited detail rows

Usage:
    from allocation.assembler import PlanRequest, generate_allocation_plan
    from allocation.reconciler import merge_plan

    plan, draft = await generate_allocation_plan(db, PlanRequest(...))
    result = await merge_plan(AsyncSessionLocal, account_id, plan.plan_id)
"""
