"""
CLI module for the review crawler.

Provides command-line interface using Typer:
- start / stop / resume: Drive a single crawl session
- status: View stored sessions
- queue / batch: Manage and run the target queue
- config: Configuration management
"""

from review_crawler.cli.main import app

__all__ = ["app"]
