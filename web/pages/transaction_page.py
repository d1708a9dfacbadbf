"""Transaction detail page."""

from fasthtml.common import H1, Div, Span, to_xml

from api.models import TransactionResponse
from src.ledgerly.core.config import AppConfig
from web.components.layout import create_page_layout
from web.components.suggestion_badge import create_suggestion_badge


def _detail_row(label: str, value: str) -> Div:
    return Div(
        Span(label, cls="text-sm text-gray-500 w-32"),
        Span(value, cls="text-sm font-medium"),
        cls="flex py-2 border-b",
    )


def render_transaction_page(transaction: TransactionResponse, config: AppConfig, user_id: str) -> str:
    """Render the detail page; the suggestion badge starts polling on load."""
    sign = "-" if transaction.transaction_type == "expense" else "+"
    amount = f"{sign}{transaction.amount_cents / 100:,.2f} {config.default_currency}"

    badge = create_suggestion_badge(
        transaction,
        elapsed=0,
        interval=config.suggestions.poll_interval_seconds,
        timeout=config.suggestions.poll_timeout_seconds,
    )

    content = Div(
        H1(transaction.description, cls="text-2xl font-bold mb-6"),
        badge,
        Div(
            _detail_row("Amount", amount),
            _detail_row("Date", transaction.transaction_date.date().isoformat()),
            _detail_row("Type", transaction.transaction_type.value.capitalize()),
            _detail_row("Account", transaction.account_name or "Unknown"),
            _detail_row("Category", transaction.category_name or "Uncategorized"),
            cls="bg-white rounded-lg shadow p-6",
        ),
        cls="container mx-auto px-4 py-8 max-w-3xl",
    )

    return create_page_layout(f"{transaction.description} - Ledgerly", to_xml(content), user_id=user_id)
