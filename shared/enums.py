"""
Enumerations used throughout the game.
"""
from enum import Enum


class GameStatus(str, Enum):
    """Lifecycle status of a game document."""
    WAITING = "waiting"
    IN_PROGRESS = "in-progress"
    FINISHED = "finished"


class SquareOutcome(str, Enum):
    """What happens when a player lands on a square."""
    BUILD_OFFER = "BUILD_OFFER"
    SAFE_ZONE = "SAFE_ZONE"
    RENT = "RENT"
    EQUATION_CHALLENGE = "EQUATION_CHALLENGE"


class TurnPhase(str, Enum):
    """Phase of the acting player's turn."""
    IDLE = "IDLE"
    ROLLING = "ROLLING"
    MOVED = "MOVED"
    BUILD_DECISION = "BUILD_DECISION"
    CHALLENGE_PENDING = "CHALLENGE_PENDING"
    HINT_OFFERED = "HINT_OFFERED"
    TURN_ENDED = "TURN_ENDED"
    GAME_OVER = "GAME_OVER"


class DecisionKind(str, Enum):
    """Kinds of human decisions a turn can wait on."""
    BUILD = "BUILD"
    CHALLENGE = "CHALLENGE"
    HINT = "HINT"


class AnswerVerdict(str, Enum):
    """Classification of a submitted equation answer."""
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    UNPARSEABLE = "UNPARSEABLE"


class InvitationStatus(str, Enum):
    """Status of an invitation."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Operator(str, Enum):
    """Arithmetic operators used by equation challenges."""
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"


class MessageType(str, Enum):
    """Types of messages between client and gateway."""
    # Connection
    CONNECT = "CONNECT"

    # Lobby
    CREATE_GAME = "CREATE_GAME"
    JOIN_GAME = "JOIN_GAME"
    LEAVE_GAME = "LEAVE_GAME"
    LIST_GAMES = "LIST_GAMES"
    GAME_LIST = "GAME_LIST"

    # Game state
    WATCH_GAME = "WATCH_GAME"
    GAME_STATE = "GAME_STATE"
    GAME_DELETED = "GAME_DELETED"

    # Turn actions
    ROLL_DICE = "ROLL_DICE"
    SUBMIT_BUILD_DECISION = "SUBMIT_BUILD_DECISION"
    SUBMIT_ANSWER = "SUBMIT_ANSWER"
    RESPOND_HINT = "RESPOND_HINT"
    TURN_RESULT = "TURN_RESULT"

    # Invitations
    INVITE_PLAYER = "INVITE_PLAYER"
    RESPOND_INVITATION = "RESPOND_INVITATION"
    INVITATION_RECEIVED = "INVITATION_RECEIVED"

    # Generic responses
    ACTION_RESULT = "ACTION_RESULT"
    ERROR = "ERROR"
