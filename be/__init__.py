"""Backend package: DB models, pipelines, APIs.

This package synchronizes GitHub and Snyk data into the database on a
schedule and serves it to the frontend.
"""
