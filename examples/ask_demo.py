"""Minimal demonstration of a blocking ask against the local research service."""

from research_core.api.service import ask

if __name__ == "__main__":
    question = "What is the boiling point of water at the top of Mount Everest?"
    result = ask(question)
    print("User:", question)
    print("Status:", result["status"])
    print("Bot:", result["messages"][-1]["text"])
    for ref in result["messages"][-1].get("references", []):
        print("  -", ref["exactQuote"], ref["url"])
