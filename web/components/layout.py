"""Layout components for web pages."""

import json
from html import escape


def create_sidebar():
    """Create the navigation sidebar HTML."""
    return """
    <div class="w-64 bg-gray-50 h-screen p-4 fixed left-0 top-0 flex flex-col">
        <div class="mb-6">
            <h2 class="text-xl font-bold mb-2">Ledgerly</h2>
            <p class="text-sm text-gray-600 mb-4">Personal Budget</p>
        </div>
        <nav class="mb-6">
            <ul class="space-y-1">
                <li><a href="/docs" class="block py-2 px-3 rounded hover:bg-gray-100">API Reference</a></li>
            </ul>
        </nav>
        <hr class="mb-4">
        <div class="mt-auto">
            <p class="text-xs text-gray-500">Category suggestions are generated by AI and need your approval</p>
        </div>
    </div>
    """


def create_page_layout(title: str, content: str, user_id: str | None = None):
    """Create the main page layout with sidebar and content area.

    When ``user_id`` is given, HTMX requests issued from the page carry it in
    the X-User-Id header.
    """
    hx_headers = ""
    if user_id:
        hx_headers = f" hx-headers='{escape(json.dumps({'X-User-Id': user_id}), quote=True)}'"

    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1">
        <title>{escape(title)}</title>
        <link href="https://cdn.jsdelivr.net/npm/tailwindcss@2.2.19/dist/tailwind.min.css" rel="stylesheet">
        <script src="https://unpkg.com/htmx.org@1.9.12"></script>
    </head>
    <body{hx_headers}>
        {create_sidebar()}
        <div class="ml-64 min-h-screen">
            {content}
        </div>
    </body>
    </html>
    """
