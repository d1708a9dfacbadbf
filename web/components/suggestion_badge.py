"""AI suggestion badge components using FastHTML.

The pending badge re-requests itself through HTMX until the suggestion shows
up or the polling window runs out. Found and timed-out badges carry no HTMX
trigger, which is what stops the polling.
"""

from fasthtml.common import Button, Div, P, Span

from api.models import SuggestionResponse, TransactionResponse

BADGE_ID = "suggestion-badge"


def badge_url(transaction_id: str, elapsed: float) -> str:
    return f"/transactions/{transaction_id}/suggestion-badge?elapsed={elapsed:g}"


def create_pending_badge(transaction_id: str, elapsed: float, interval: float) -> Div:
    """Badge shown while the suggestion is still being generated."""
    return Div(
        Span("Suggesting a category...", cls="text-sm text-gray-600"),
        id=BADGE_ID,
        data_state="pending",
        hx_get=badge_url(transaction_id, elapsed + interval),
        hx_trigger=f"load delay:{interval:g}s",
        hx_swap="outerHTML",
        cls="bg-gray-50 border border-gray-200 rounded-lg p-4 mb-6 animate-pulse",
    )


def create_timed_out_badge() -> Div:
    """Badge shown once polling gives up without a suggestion."""
    return Div(
        P("No AI suggestion available for this transaction.", cls="text-sm text-gray-600"),
        id=BADGE_ID,
        data_state="timed_out",
        cls="bg-gray-50 border border-gray-200 rounded-lg p-4 mb-6",
    )


def create_found_badge(transaction_id: str, suggestion: SuggestionResponse) -> Div:
    """Badge showing the suggested category, with approve/reject actions while undecided."""
    content = [
        P(
            "Suggested category: ",
            Span(suggestion.suggested_category_name, cls="font-semibold"),
            Span(f" ({suggestion.confidence_score:.0%} confidence)", cls="text-purple-600"),
            cls="text-purple-800",
        )
    ]

    if suggestion.approved is None:
        action_url = f"/transactions/{transaction_id}/suggestion"
        content.append(
            Div(
                Button(
                    "Approve",
                    hx_post=f"{action_url}/approve",
                    hx_target=f"#{BADGE_ID}",
                    hx_swap="outerHTML",
                    cls="bg-green-500 text-white hover:bg-green-600 px-3 py-1 rounded text-sm",
                ),
                Button(
                    "Reject",
                    hx_post=f"{action_url}/reject",
                    hx_target=f"#{BADGE_ID}",
                    hx_swap="outerHTML",
                    cls="bg-gray-500 text-white hover:bg-gray-600 px-3 py-1 rounded text-sm",
                ),
                cls="flex gap-2 mt-3",
            )
        )
        state = "found"
    else:
        decision = "Approved" if suggestion.approved else "Rejected"
        content.append(P(decision, cls="text-sm text-purple-700 mt-2"))
        state = "approved" if suggestion.approved else "rejected"

    return Div(
        *content,
        id=BADGE_ID,
        data_state=state,
        cls="bg-purple-50 border border-purple-200 rounded-lg p-4 mb-6",
    )


def create_suggestion_badge(
    transaction: TransactionResponse, elapsed: float, interval: float, timeout: float
) -> Div:
    """Pick the badge for the transaction's current suggestion state."""
    if transaction.suggestion is not None:
        return create_found_badge(transaction.id, transaction.suggestion)
    if elapsed >= timeout:
        return create_timed_out_badge()
    return create_pending_badge(transaction.id, elapsed, interval)
