#!/usr/bin/env python3
"""
MCP server exposing the issue command parser.

Tools:
    parse_command(text, session_id)  full parse with per-session context
    extract_entities(text)           entity extraction only
    cache_stats()                    reference cache sizes

Port: 8891 (configurable via ISSUE_NLP_MCP_PORT)
Transport: SSE
"""

import json
import logging
import os
import sys

from fastmcp import FastMCP

from issue_nlp import IssueNLP
from issue_nlp.errors import IssueNLPError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("issue-nlp.mcp")

# Configuration
MCP_ENABLED = os.getenv("ISSUE_NLP_MCP_ENABLED", "false").lower() == "true"
MCP_PORT = int(os.getenv("ISSUE_NLP_MCP_PORT", "8891"))
MCP_HOST = os.getenv("ISSUE_NLP_MCP_HOST", "0.0.0.0")

mcp = FastMCP(name="issue-nlp")

nlp = IssueNLP()


async def parse_command(text: str, session_id: str = "default") -> str:
    """
    Parse an issue-tracker command written in plain English.

    Args:
        text: The command, e.g. "create a high priority bug in PROJ".
        session_id: Conversation id; follow-up commands in the same session
            can omit values mentioned earlier ("assign it to me").

    Returns:
        JSON with the intent, its entities, clarification questions,
        suggestions and alternate intents.
    """
    logger.info(f"Tool called: parse_command(session_id='{session_id}')")
    try:
        result = nlp.parse(text, session_id=session_id)
    except IssueNLPError as e:
        return json.dumps({"error": str(e)})

    payload = result.model_dump(mode="json")
    payload["needs_clarification"] = result.needs_clarification
    return json.dumps(payload)


async def extract_entities(text: str) -> str:
    """
    Extract entities (issue keys, projects, users, dates, ...) from text.

    Returns:
        JSON object keyed by entity name.
    """
    logger.info("Tool called: extract_entities")
    try:
        entities = nlp.extract_entities(text)
    except IssueNLPError as e:
        return json.dumps({"error": str(e)})
    return json.dumps({key: entity.model_dump(mode="json") for key, entity in entities.items()})


async def cache_stats() -> str:
    """Return the number of cached projects, users and statuses as JSON."""
    return json.dumps(nlp.get_cache_stats())


# Registered without the decorator so the functions stay directly callable
mcp.tool()(parse_command)
mcp.tool()(extract_entities)
mcp.tool()(cache_stats)


def main():
    """Main entry point."""
    if not MCP_ENABLED:
        logger.warning("Issue NLP MCP server is DISABLED")
        logger.warning("To enable: export ISSUE_NLP_MCP_ENABLED=true")
        sys.exit(0)

    logger.info("Starting issue NLP MCP server")
    logger.info(f"Host: {MCP_HOST}")
    logger.info(f"Port: {MCP_PORT}")
    logger.info("Tools: parse_command, extract_entities, cache_stats")

    mcp.run(transport="sse", host=MCP_HOST, port=MCP_PORT)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
