"""Minimal demonstration of a Copilot conversation.

Requires COPILOT_ACCESS_TOKEN (and optionally COPILOT_SUBSCRIPTION_KEY) in the
environment, .env or config.yaml.
"""

from copilot_chat.api.service import get_transcript, run_copilot_chat

if __name__ == "__main__":
    question = "What are the main differences between a list and a tuple in Python?"
    result = run_copilot_chat(question)
    if result["error"]:
        print("Error:", result["error"])
    for message in get_transcript():
        print(f"{message['role']}: {message['content']}")
