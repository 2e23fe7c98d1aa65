"""Injection pipelines that fetch GitHub and Snyk data and persist it.

Each step is callable on its own; ``sync`` runs them in dependency order.
"""
