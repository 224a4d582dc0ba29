"""
Session history service.

Builds the ordered round history of a play-through so the frontend can
render authoritative payout logs directly from the server.
"""
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from models import RoundResult, BattleBet


def serialize_battle(battle: BattleBet) -> Dict[str, Any]:
    return {
        "battle_index": battle.battle_index,
        "stake": battle.stake,
        "choice": battle.choice,
        "winner": battle.winner,
        "player_won": battle.player_won,
        "auto_submitted": battle.auto_submitted,
    }


def get_session_history(session_id: int, db: Session) -> List[Dict[str, Any]]:
    """
    Return the settled rounds of a session (round 1..3) in order.

    Round 3 is reported while it is still in progress too, so a client that
    reconnects mid-series can show the battles already fought. Such an entry
    has ``settled = False`` and no multiplier yet.
    """
    results = (
        db.query(RoundResult)
        .filter(RoundResult.session_id == session_id)
        .order_by(RoundResult.round_number)
        .all()
    )
    battles = (
        db.query(BattleBet)
        .filter(BattleBet.session_id == session_id)
        .order_by(BattleBet.battle_index)
        .all()
    )

    history: List[Dict[str, Any]] = []

    for result in results:
        entry: Dict[str, Any] = {
            "round_number": result.round_number,
            "settled": True,
            "stake": result.stake,
            "choice": result.choice,
            "resolved_outcome": result.resolved_outcome,
            "multiplier": float(result.multiplier),
            "delta": result.delta,
            "balance_after": result.balance_after,
            "auto_submitted": result.auto_submitted,
        }
        if result.round_number == 3:
            entry["battles"] = [serialize_battle(b) for b in battles]
        history.append(entry)

    round3_settled = any(r.round_number == 3 for r in results)
    if battles and not round3_settled:
        history.append({
            "round_number": 3,
            "settled": False,
            "stake": sum(b.stake for b in battles),
            "choice": [b.choice for b in battles],
            "resolved_outcome": None,
            "multiplier": None,
            "delta": None,
            "balance_after": None,
            "auto_submitted": False,
            "battles": [serialize_battle(b) for b in battles],
        })

    return history
