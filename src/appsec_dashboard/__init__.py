"""AppSec Dashboard — authenticated gateway to a stateful AppSec agent.

Users register and log in, then chat with an analysis agent (free-form
security questions, code review, threat modeling). Each user gets one
isolated, reusable agent conversation held in process memory.
"""

__version__ = "0.1.0"
