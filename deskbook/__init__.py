# Package initializer for the desk reservation service.

"""
The `deskbook` package contains all modules for the desk reservation backend.

Modules:

- ``config``: application settings loaded from environment variables.
- ``errors``: the exception taxonomy shared by every layer.
- ``intervals``: time intervals, overlap checks and bookable time options.
- ``models``: Pydantic data models for bookings, scopes and API payloads.
- ``layout``: the building/floor/desk layout tree and its persistence.
- ``store``: the document store contract and the in-memory store.
- ``firestore_store``: the Firestore implementation of the document store.
- ``bookings``: the booking record store built on a document store.
- ``availability``: the live desk availability engine.
- ``guard``: booking admission and cancellation.
- ``recurrence``: recurring booking expansion.
- ``identity``: sign-up/sign-in and admin checks.
- ``session``: per-client session context.
- ``dashboard``: usage aggregates for users and admins.
- ``main``: the FastAPI application definition.

"""
