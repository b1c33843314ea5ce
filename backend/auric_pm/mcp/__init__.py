"""
Auric PM - MCP Tool Server
==========================

Stdio MCP server exposing the project-management tools to coding agents.
"""
