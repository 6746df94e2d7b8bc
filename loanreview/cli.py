"""Command line interface for driving loan reviews."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import typer

from loanreview.api import ApiResponse, record_view
from loanreview.config import load_config
from loanreview.engine import LocalWorkflowEngine
from loanreview.errors import NotFoundError, ReviewError
from loanreview.runtime import build_runtime

app = typer.Typer(help="CLI for loan review workflows")

# Command groups
review_app = typer.Typer(help="Commands for starting and advancing reviews")
execution_app = typer.Typer(help="Commands for inspecting engine executions")

app.add_typer(review_app, name="review")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Override the configured log level"
    ),
) -> None:
    """Loan review CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _parse_attributes(values: Optional[List[str]]) -> List[Dict[str, str]]:
    attributes = []
    for value in values or []:
        name, sep, status = value.partition("=")
        if not sep or not name.strip() or not status.strip():
            typer.secho(
                f"Invalid attribute '{value}', expected NAME=STATUS", fg=typer.colors.RED
            )
            raise typer.Exit(code=1)
        attributes.append({"name": name.strip(), "status": status.strip()})
    return attributes


def _emit(response: ApiResponse) -> None:
    typer.echo(json.dumps(response.model_dump(mode="json", exclude_none=True), indent=2))
    if not response.ok:
        raise typer.Exit(code=1)


@review_app.command("start")
def review_start(
    request_id: str = typer.Option(..., "--request-id", help="Business request id"),
    loan_id: str = typer.Option(..., "--loan-id", help="Loan under review"),
    review_type: str = typer.Option(
        ..., "--review-type", help="LDC, Sec Policy or Conduit"
    ),
    attribute: Optional[List[str]] = typer.Option(
        None, "--attribute", "-a", help="Attribute outcome as NAME=STATUS (repeatable)"
    ),
) -> None:
    """
    Start a new review and print its task id.

    Example:
        loanreview review start --request-id REQ-123456 --loan-id LN-1234567 \\
            --review-type LDC -a income=Pending
    """
    payload: Dict[str, Any] = {
        "requestId": request_id,
        "loanId": loan_id,
        "reviewType": review_type,
    }
    attributes = _parse_attributes(attribute)
    if attributes:
        payload["attributes"] = attributes
    runtime = build_runtime()
    _emit(asyncio.run(runtime.api.start_review(payload)))


@review_app.command("assign-type")
def review_assign_type(
    task_id: str,
    request_id: str = typer.Option(..., "--request-id"),
    loan_id: str = typer.Option(..., "--loan-id"),
    review_type: str = typer.Option(..., "--review-type"),
) -> None:
    """Assign the review type to a review awaiting classification."""
    payload = {
        "taskId": task_id,
        "requestId": request_id,
        "loanId": loan_id,
        "reviewType": review_type,
    }
    runtime = build_runtime()
    _emit(asyncio.run(runtime.api.assign_type(payload)))


@review_app.command("next-step")
def review_next_step(
    task_id: str,
    request_id: str = typer.Option(..., "--request-id"),
    loan_id: str = typer.Option(..., "--loan-id"),
    decision: str = typer.Option(..., "--decision", help="Reviewer decision"),
    attribute: Optional[List[str]] = typer.Option(
        None, "--attribute", "-a", help="Attribute outcome as NAME=STATUS (repeatable)"
    ),
) -> None:
    """
    Submit a decision with the full list of attribute outcomes.

    The submitted attributes replace the stored ones. When any attribute is
    still pending the review keeps waiting for another decision.

    Example:
        loanreview review next-step TSK-0A1B2C3D --request-id REQ-123456 \\
            --loan-id LN-1234567 --decision Approve -a income=Approved
    """
    payload = {
        "taskId": task_id,
        "requestId": request_id,
        "loanId": loan_id,
        "decision": decision,
        "attributes": _parse_attributes(attribute),
    }
    runtime = build_runtime()
    _emit(asyncio.run(runtime.api.next_step(payload)))


@review_app.command("show")
def review_show(request_id: str, task_id: str) -> None:
    """Show the stored record of one review."""
    runtime = build_runtime()
    _emit(asyncio.run(runtime.api.get_review(request_id, task_id)))


@review_app.command("list")
def review_list(
    loan_id: str = typer.Option(..., "--loan-id", help="Loan to list reviews for"),
) -> None:
    """List all reviews recorded for a loan."""
    runtime = build_runtime()
    response = asyncio.run(runtime.api.find_by_loan(loan_id))
    if response.ok and not response.data["records"]:
        typer.echo("No reviews found")
        return
    _emit(response)


@execution_app.command("describe")
def execution_describe(request_id: str, task_id: str) -> None:
    """
    Describe the engine execution driving a review.

    Executions paused by another process are described from the
    continuation ticket stored on the record.
    """
    runtime = build_runtime()

    async def describe() -> Dict[str, Any]:
        record = await runtime.service.get_review(request_id, task_id)
        view: Dict[str, Any] = {"record": record_view(record), "execution": None}
        if record.execution_ref:
            try:
                execution = await runtime.engine.describe_execution(record.execution_ref)
            except NotFoundError:
                execution = None
            if (
                execution is None
                and record.continuation_ticket
                and isinstance(runtime.engine, LocalWorkflowEngine)
            ):
                execution = runtime.engine.describe_ticket(record.continuation_ticket)
            if execution is not None:
                view["execution"] = execution.model_dump(mode="json")
        return view

    try:
        view = asyncio.run(describe())
    except ReviewError as exc:
        typer.secho(f"{exc.code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(view, indent=2))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
