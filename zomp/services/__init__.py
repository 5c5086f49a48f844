# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and document-store access for one concern:
#
#   account_service       - registration, credentials, profile, verification
#   resource_service      - comic/story lifecycle (create, edit, publish, delete)
#   rating_service        - per-principal rating ledger and resource aggregates
#   comment_service       - comments on published resources
#   subscription_service  - subscription edges and subscriber counters
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency. Expected failures are raised as ``ApiError``.
