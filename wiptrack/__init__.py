"""
wiptrack - One prioritized worklist for your open GitHub PRs and issues.

A small web service that:
1. Fetches your open pull requests and issues from GitHub (GraphQL)
2. Merges them with your local overrides (priority, notes, hidden)
3. Auto-classifies anything you haven't prioritized yet
4. Publishes a read-only snapshot over an MCP tool call

Usage:
    wiptrack init         # Write a sample wiptrack.yml
    wiptrack web          # Start the API server
    wiptrack items        # Print your worklist in the terminal
    wiptrack snapshot     # Print the last published snapshot
"""

__version__ = "0.1.0"
__author__ = "wiptrack"
