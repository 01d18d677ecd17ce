"""
Utility functions for ID and name generation
"""
import random
import string


def generate_client_id(length: int = 9) -> str:
    """Generate a random connection ID"""
    alphabet = string.ascii_lowercase + string.digits
    return "conn_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_user_id(length: int = 9) -> str:
    """Generate a random user ID for a session token"""
    alphabet = string.ascii_lowercase + string.digits
    return "user_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_room_id(length: int = 7) -> str:
    """Generate a short shareable room ID (A-Z, 0-9)"""
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def generate_client_name() -> str:
    """Generate a random display name"""
    adjectives = [
        "Curious", "Chatty", "Fluent", "Polyglot", "Bold", "Witty",
        "Eager", "Friendly", "Steady", "Bright", "Lively", "Patient",
        "Clever", "Cheerful"
    ]
    nouns = [
        "Parrot", "Owl", "Fox", "Otter", "Speaker", "Listener",
        "Scholar", "Traveler", "Pen", "Echo", "Voice", "Linguist", "Koala", "Finch"
    ]
    return random.choice(adjectives) + random.choice(nouns) + str(random.randint(1, 99))
