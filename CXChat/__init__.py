"""
   ______  __ ________          __
  / ____/ |/ // ____/ /_  ____ _/ /_
 / /    |   // /   / __ \/ __ `/ __/
/ /___ /   |/ /___/ / / / /_/ / /_
\____//_/|_|\____/_/ /_/\__,_/\__/

CXChat Project - real-time messaging and notification fan-out for CX.

Direct messages, typing indicators, read receipts and notification pushes
delivered to every open session of a user.
License: Apache-2.0 License
"""

__version__ = "1.0.0"
