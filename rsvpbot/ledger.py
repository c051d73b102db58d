"""Poker session ledger commands."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker

from .coordinator import CommandResult
from .crud import PokerLifetime, create_poker_session, get_poker_lifetime
from .database import session_scope
from .errors import ValidationError
from .utils import mention

logger = logging.getLogger(__name__)


class PokerLedger:
    def __init__(self, session_factory: scoped_session | sessionmaker):
        self.session_factory = session_factory

    def _create(self, **fields) -> None:
        with session_scope(self.session_factory) as session:
            create_poker_session(session, **fields)

    def _lifetime(self, user_id: str) -> PokerLifetime:
        with session_scope(self.session_factory) as session:
            return get_poker_lifetime(session, user_id)

    async def log_session(
        self,
        user_id: str,
        in_amount: float,
        out_amount: float,
        location: str | None = None,
        stakes: str | None = None,
    ) -> CommandResult:
        try:
            await asyncio.to_thread(
                self._create,
                user_id=user_id,
                in_amount=in_amount,
                out_amount=out_amount,
                location=location,
                stakes=stakes,
            )
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        except SQLAlchemyError:
            logger.exception("Failed to create poker session for user %s", user_id)
            return CommandResult(False, "Failed to save poker session.")

        message = (
            f"Session logged: In={in_amount:.2f} Out={out_amount:.2f} "
            f"Profit={out_amount - in_amount:.2f}"
        )
        if location:
            message += f" Location={location}"
        if stakes:
            message += f" Stakes={stakes}"
        return CommandResult(True, message)

    async def lifetime(self, user_id: str) -> CommandResult:
        try:
            stats = await asyncio.to_thread(self._lifetime, user_id)
        except SQLAlchemyError:
            logger.exception("Failed to query lifetime stats for user %s", user_id)
            return CommandResult(False, "Failed to fetch lifetime stats.")
        return CommandResult(
            True,
            f"Lifetime sessions for {mention(user_id)}: "
            f"{stats.sessions} sessions, Net={stats.net:.2f}",
        )
