"""
Game engine package.
"""
from .dice import Dice
from .equations import Equation, EquationGenerator
from .board import BoardLayout, BoardSquare
from .player import Player
from .game import Game, Invitation
from .resolver import SquareResolution, SquareResolver
from .rules import RuleEngine, ValidationResult, ActionResult
from .scoring import EndGameEvaluator, rank_winners, winner_message

__all__ = [
    "Dice",
    "Equation",
    "EquationGenerator",
    "BoardLayout",
    "BoardSquare",
    "Player",
    "Game",
    "Invitation",
    "SquareResolution",
    "SquareResolver",
    "RuleEngine",
    "ValidationResult",
    "ActionResult",
    "EndGameEvaluator",
    "rank_winners",
    "winner_message",
]
