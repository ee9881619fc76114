"""
Game constants for Equation Challengers.
All monetary values are in game dollars.
"""

# Board
BOARD_SIZE = 20
DIE_SIDES = 6

# Player colors, in assignment order. The palette size bounds the roster
# and defines which squares belong to which color.
PLAYER_COLORS = [
    "#FF0000",  # Red
    "#FFFF00",  # Yellow
    "#0000FF",  # Blue
    "#008000",  # Green
    "#FFA500",  # Orange
]
PALETTE_SIZE = len(PLAYER_COLORS)

# Roster
MAX_PLAYERS = PALETTE_SIZE
MIN_PLAYERS_TO_START = 2

# Money
STARTING_MONEY = 5000
STARTING_BANK_MONEY = 100000
BANK_AMOUNT_PER_CORRECT_ANSWER = 500
PROPERTY_COST = 1000
RENT_AMOUNT = 300

# Equations
OPERAND_MIN = 1
OPERAND_MAX = 10

# Game end
MAX_TURNS = 25

# Rewards
EQUATION_SOLVER_REWARD = "Equation Solver"
GAME_CHAMPION_REWARD = "Game Champion"
EQUATION_SOLVER_CHANCE = 0.5

# Store collections
GAMES_COLLECTION = "games"
USERS_COLLECTION = "users"

# Fallback text used when the completion service is unavailable
COMPLETION_FALLBACK = "Failed to connect to the AI. Please try again."
SUMMARY_FALLBACK = "Failed to generate game summary."
