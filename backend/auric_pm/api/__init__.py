"""
Auric PM - REST API
===================

FastAPI application exposing the project-management services over HTTP.
"""
