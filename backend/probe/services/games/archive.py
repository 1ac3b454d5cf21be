"""Completed-game archives and the per-game viewer guess log.

Each finished game is written to ``<room_code>_<YYYY-MM-DD>.json`` under the
archive directory. The file holds the players (secret words included), the
full turn log, the official results, standings for every player including
bots, and the viewer guesses collected while the game ran.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from probe.errors import NotFound


class ViewerGuessLog:
    """In-memory store of spectator word guesses, keyed by room code.

    A room's log is opened when its game becomes active and is handed to
    the archive (then discarded) when the game completes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._guesses: Dict[str, List[Dict[str, Any]]] = {}

    def open(self, room_code: str) -> None:
        with self._lock:
            self._guesses.setdefault(room_code, [])

    def record(self, room_code: str, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._guesses.setdefault(room_code, []).append(entry)

    def get(self, room_code: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._guesses.get(room_code, []))

    def flush(self, room_code: str) -> List[Dict[str, Any]]:
        with self._lock:
            return self._guesses.pop(room_code, [])


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_snapshot(game, results: List[Dict[str, Any]], viewer_guesses: List[Dict[str, Any]]) -> Dict[str, Any]:
    players = game.ordered_players
    names = {p.key: p.display_name for p in players}
    standings = sorted(players, key=lambda p: -(p.total_score or 0))
    return {
        'id': game.id,
        'room_code': game.room_code,
        'status': game.status,
        'created_at': _iso(game.created_at),
        'started_at': _iso(game.started_at),
        'completed_at': _iso(game.completed_at),
        'players': [
            {
                'id': p.key,
                'user_id': p.user_id,
                'bot_id': p.bot_id,
                'is_bot': p.is_bot,
                'display_name': p.display_name,
                'secret_word': p.secret_word,
                'padded_word': p.padded_word,
                'front_padding': p.front_padding,
                'back_padding': p.back_padding,
                'total_score': p.total_score,
                'is_eliminated': p.is_eliminated,
                'turn_order': p.turn_order,
            }
            for p in players
        ],
        'turns': [
            dict(t.to_dict(),
                 player_name=names.get(t.player_id, 'Unknown'),
                 target_player_name=names.get(t.target_player_id, 'Unknown'))
            for t in game.turns
        ],
        'results': results,
        'standings': [
            {
                'player_id': p.key,
                'display_name': p.display_name,
                'final_score': p.total_score,
                'is_bot': p.is_bot,
                'placement': idx,
            }
            for idx, p in enumerate(standings, start=1)
        ],
        'viewer_guesses': viewer_guesses,
    }


class JsonFileArchiver:
    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, room_code: str, completed_at: Optional[str]) -> Path:
        day = completed_at[:10] if completed_at else 'incomplete'
        return self.directory / f'{room_code}_{day}.json'

    def archive(self, snapshot: Dict[str, Any]) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(snapshot['room_code'], snapshot.get('completed_at'))
        with open(path, 'w', encoding='utf-8') as fh:
            json.dump(snapshot, fh, indent=2, ensure_ascii=False)
        return path

    def list_history(self) -> List[Dict[str, Any]]:
        """Summaries of archived games, newest first."""
        if not self.directory.exists():
            return []
        summaries = []
        for path in sorted(self.directory.glob('*.json'), reverse=True):
            with open(path, 'r', encoding='utf-8') as fh:
                data = json.load(fh)
            summaries.append({
                'room_code': data.get('room_code'),
                'completed_at': data.get('completed_at'),
                'players': [p.get('display_name') for p in data.get('players', [])],
                'winner': (data.get('results') or [{}])[0].get('display_name'),
                'file': path.name,
            })
        summaries.sort(key=lambda s: s.get('completed_at') or '', reverse=True)
        return summaries

    def load_history(self, room_code: str) -> Dict[str, Any]:
        matches = sorted(self.directory.glob(f'{room_code}_*.json'), reverse=True)
        if not matches:
            raise NotFound('Archived game not found')
        with open(matches[0], 'r', encoding='utf-8') as fh:
            return json.load(fh)
