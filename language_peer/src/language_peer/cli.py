"""
Terminal practice client.

Usage:
    language-peer --agent friendly-tutor
    language-peer --list-agents
    language-peer --history
    language-peer --agent strict-teacher --offline --no-speech

In the conversation loop, type a sentence to send it, or:
    /switch <agent-id>   change agent (the current session is saved)
    /topic               ask the agent for a conversation starter
    /quit                save and exit
"""

import argparse
import asyncio
import logging
import random
import sys
from typing import List, Optional

from language_peer.config import EngineConfig
from language_peer.conversation_session import ConversationSession, SessionChange, SessionStatus
from language_peer.errors import ConfigurationError, InvalidAgentError, LanguagePeerError
from language_peer.logger import get_logger, setup_logging
from language_peer.models import MODE_LOCAL, ROLE_AGENT
from language_peer.personalities import get_default_catalog

logger = get_logger("language_peer.cli")


def print_agents() -> None:
    for personality in get_default_catalog().all():
        print(f"{personality.id:22s} {personality.display_name:16s} {personality.description}")


def render_change(change: SessionChange) -> None:
    """Print the newest agent turn when it arrives."""
    if change.state != SessionStatus.SPEAKING_RESPONSE or not change.turns:
        return
    turn = change.turns[-1]
    if turn.role != ROLE_AGENT:
        return
    marker = " (offline)" if change.mode == MODE_LOCAL else ""
    print(f"\n{change.agent_id}{marker}: {turn.text}")
    if turn.feedback:
        fb = turn.feedback
        print(f"  Grammar: {fb.grammar_score}%  Fluency: {fb.fluency_score}%  Vocabulary: {fb.vocabulary_score}%")
        for suggestion in fb.suggestions:
            print(f"  - {suggestion}")
        for correction in fb.corrections:
            print(f"  * {correction}")
        if fb.encouragement:
            print(f"  {fb.encouragement}")


async def print_history(session: ConversationSession, limit: int) -> None:
    summaries = await session.list_recent(limit)
    if not summaries:
        print("No saved conversations.")
        return
    for s in summaries:
        minutes, seconds = divmod(s.duration_seconds, 60)
        print(f"{s.session_id}  {s.agent_id:22s} {s.turn_count:3d} turns  "
              f"{minutes:02d}:{seconds:02d}  {s.last_activity:%Y-%m-%d %H:%M}  [{s.mode}]")


async def conversation_loop(session: ConversationSession, agent_id: str) -> None:
    session.subscribe(render_change)
    session.start(agent_id)
    greeting = session.greeting()
    print(f"\n{agent_id}: {greeting}")
    await session.speech.speak(greeting, session.personality)

    while True:
        try:
            line = await asyncio.to_thread(input, "\n> ")
        except EOFError:
            break
        line = line.strip()

        if line in ("/quit", "/exit"):
            break
        if line == "/topic":
            print(f"\n{session.agent_id}: {session.suggest_topic()}")
            continue
        if line.startswith("/switch"):
            parts = line.split(maxsplit=1)
            if len(parts) < 2:
                print("Usage: /switch <agent-id>")
                continue
            try:
                await session.switch_agent(parts[1])
            except InvalidAgentError as e:
                print(e)
                continue
            greeting = session.greeting()
            print(f"\n{session.agent_id}: {greeting}")
            await session.speech.speak(greeting, session.personality)
            continue

        task = session.submit_utterance(line)
        if task is not None:
            await task

    await session.end()


async def run(args: argparse.Namespace, config: EngineConfig) -> int:
    if args.no_speech:
        config = config.model_copy(update={"speech_enabled": False})
    if args.offline:
        config = config.model_copy(update={"reasoning_backend": "none"})

    rng = random.Random(args.seed) if args.seed is not None else None
    session = ConversationSession.from_config(config, rng=rng)

    if args.history:
        await print_history(session, config.recent_limit)
        return 0

    monitor = session.connection_manager.monitor
    await monitor.start()
    try:
        await conversation_loop(session, args.agent)
    finally:
        await monitor.stop()
        if session.connection_manager.remote is not None:
            await session.connection_manager.remote.aclose()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Practice a language with an AI conversation partner")
    parser.add_argument("--agent", default="friendly-tutor", help="Agent personality id")
    parser.add_argument("--list-agents", action="store_true", help="List available agents and exit")
    parser.add_argument("--history", action="store_true", help="List recent saved conversations and exit")
    parser.add_argument("--offline", action="store_true", help="Never call the remote reasoning service")
    parser.add_argument("--no-speech", action="store_true", help="Disable spoken responses")
    parser.add_argument("--seed", type=int, default=None, help="Seed for offline response selection")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if args.list_agents:
        print_agents()
        return 0
    if args.agent not in get_default_catalog():
        print(f"Unknown agent {args.agent!r}. Use --list-agents to see the options.", file=sys.stderr)
        return 2

    try:
        config = EngineConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(level=logging.DEBUG if args.verbose else logging.getLevelName(config.log_level))

    try:
        return asyncio.run(run(args, config))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except LanguagePeerError as e:
        logger.error("Conversation stopped", error=e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
