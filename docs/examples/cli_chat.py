import asyncio
import os
from pathlib import Path
from typing import Annotated, List

from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import Field

from agentic_loop import AgenticLoop, BaseMessage, OpenAIModelClient, OpenAIToolRegistry, RunResult, SystemMessage
from agentic_loop import JsonFileSnapshotStore

# Load environment variables
load_dotenv()

registry = OpenAIToolRegistry()


@registry.tool
def list_notes() -> List[str]:
    """Lists the names of all saved notes."""
    return sorted(path.stem for path in Path("notes").glob("*.txt"))


@registry.tool(require_approval=True)
def save_note(
    name: Annotated[str, Field(description="Name of the note, without extension")],
    text: Annotated[str, Field(description="Content of the note")],
) -> str:
    """Saves a note to disk. Overwrites an existing note with the same name."""
    Path("notes").mkdir(exist_ok=True)
    Path("notes", f"{name}.txt").write_text(text, encoding="utf-8")
    return f"Saved note '{name}'."


async def settle(loop: AgenticLoop, result: RunResult) -> RunResult:
    """Ask the user about every parked tool call until the run is no longer suspended."""
    while result.is_suspended:
        suspension = result.suspensions[0]
        answer = input(f"Allow {suspension.tool_name}({suspension.request.args})? [y/N] ").strip().lower()
        result = await loop.resume(result.run_id, {"approved": answer == "y"}, resume_label=suspension.resume_label)
    return result


async def main() -> None:
    """
    Main function to run the CLI chat using OpenAI.
    """
    print("Welcome to the CLI Chat (OpenAI)!")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("Error: OPENAI_API_KEY not found in environment variables.")
        return

    client = AsyncOpenAI(api_key=api_key)
    loop = AgenticLoop(
        OpenAIModelClient(client=client, model_name="gpt-4o-mini"),
        registry,
        system_instruction="You are a helpful assistant that keeps notes for the user.",
        snapshots=JsonFileSnapshotStore(".snapshots"),
    )
    print("Using OpenAI.")

    history: List[BaseMessage] = []

    print("\nStart chatting! Type 'exit' or 'quit' to stop.")
    while True:
        user_input = input("\nYou: ").strip()
        if user_input.lower() in ["exit", "quit"]:
            print("Goodbye!")
            break

        if not user_input:
            continue

        try:
            result = await settle(loop, await loop.run(user_input, history=history))
            print(f"Assistant: {result.text}")
            history = [m for m in result.messages if not isinstance(m, SystemMessage)]

        except Exception as e:
            print(f"An error occurred: {e}")


if __name__ == "__main__":
    asyncio.run(main())
