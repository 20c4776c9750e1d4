"""Gomoku package exposing the match rules, the game server, and the web application."""

from .game import Room, find_winning_line
from .server import GameServer
from .web import app, create_app

__all__ = ["GameServer", "Room", "app", "create_app", "find_winning_line"]
