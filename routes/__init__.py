"""
===========================================================================
routes/__init__.py — Routes Package Initializer
===========================================================================

    page_routes.py : GET /{url:path}       (the chat page, catch-all)
    chat_routes.py : POST /api/chat-stream (streaming answers)
===========================================================================
"""
