"""Walk one loan review through the reclassification path."""

import asyncio

from loanreview import build_runtime


async def main():
    """Start, classify, decide and confirm a review."""
    runtime = build_runtime()
    api = runtime.api

    started = await api.start_review(
        {"requestId": "REQ-100200", "loanId": "LN-5550001", "reviewType": "LDC"}
    )
    task_id = started.task_id
    print(f"✅ Review started: {task_id}")
    print(f"📋 Correlation ID: {started.correlation_id}")

    ids = {"taskId": task_id, "requestId": "REQ-100200", "loanId": "LN-5550001"}
    assigned = await api.assign_type({**ids, "reviewType": "Sec Policy"})
    print(f"🔖 Classified: {assigned.data['review_type']}")

    attributes = [
        {"name": "income", "status": "Reclass"},
        {"name": "collateral", "status": "Approved"},
    ]
    decided = await api.next_step({**ids, "decision": "Reclass", "attributes": attributes})
    print(f"⏸️  After decision: {decided.data['status']} ({decided.data['aggregate_decision']})")

    confirmed = await api.next_step({**ids, "decision": "Confirm", "attributes": attributes})
    print(f"🏁 After confirmation: {confirmed.data['status']}")


if __name__ == "__main__":
    asyncio.run(main())
