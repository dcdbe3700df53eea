"""
CRM Sync API Routes Package.

Example:
    from crmsync.routes.sync import router as sync_router

    app.include_router(sync_router)
"""
