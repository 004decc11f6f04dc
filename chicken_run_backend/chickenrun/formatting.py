# chicken_run_backend/chickenrun/formatting.py

"""Display helpers. Pure functions over engine snapshots; the engine never calls these."""

from chickenrun.game_logic import lane_multiplier, payout_for


def format_money(amount: float) -> str:
    return f"{amount:,.2f}"


def format_signed_money(amount: float) -> str:
    sign = "+" if amount >= 0 else "-"
    return f"{sign}${format_money(abs(amount))}"


def history_tier(multiplier: float) -> str:
    if multiplier < 1.5:
        return "low"
    if multiplier < 3:
        return "mid"
    return "high"


def phase_label(snapshot: dict) -> str:
    phase = snapshot.get("phase")
    terminal = snapshot.get("terminal")
    if phase == "betting":
        return "BETTING"
    if phase == "resolving":
        return "CALCULATING"
    if phase == "running":
        return "LIVE"
    if phase == "settling" and terminal:
        if terminal["status"] == "crashed":
            return f"CRASHED @ {terminal['multiplier']}x"
        return f"SAFE — {terminal['multiplier']}x"
    return (phase or "idle").upper()


def cashout_offer(snapshot: dict) -> float | None:
    """What the player would receive by cashing out right now, if they can."""
    player = snapshot.get("player_bet")
    if snapshot.get("phase") != "running" or not player or player["status"] != "waiting":
        return None
    return payout_for(player["stake"], lane_multiplier(snapshot.get("current_lane", 0)))


def decorate_snapshot(snapshot: dict) -> dict:
    """Returns the snapshot with a `display` block of ready-to-render strings."""
    stats = snapshot["stats"]
    offer = cashout_offer(snapshot)
    display = {
        "phase_label": phase_label(snapshot),
        "round_label": f"Round #{snapshot['round']}",
        "countdown": int(round(snapshot.get("seconds_left", 0))),
        "balance": format_money(stats["balance"]),
        "net": format_signed_money(stats["net"]),
        "players_count": f"{len(snapshot['bettors'])} players",
        "cashout_offer": f"CASHOUT ${format_money(offer)}" if offer is not None else None,
        "history": [{"label": f"{m:.1f}x", "tier": history_tier(m)} for m in reversed(snapshot["history"])],
    }
    return {**snapshot, "display": display}
