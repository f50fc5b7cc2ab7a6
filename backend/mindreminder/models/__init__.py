from .user import User
from .profile import Profile, UserSettings
from .reminder import Reminder
from .habit import MicroAction, MicroActionCompletion
from .friend import Friend, SharedReminder, FriendNotification
