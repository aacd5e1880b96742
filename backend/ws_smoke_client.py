import asyncio
import json
import os
import sys

import websockets

BASE_URL = os.getenv("CHATBFC_WS_URL", "ws://127.0.0.1:8000/ws/mock-interview")
ANSWER = "I would project unlevered free cash flow, discount it at WACC and add a terminal value."


async def main(firm: str = "Goldman Sachs", stage: str = "first_round", num_questions: int = 2):
    async with websockets.connect(BASE_URL, max_size=None) as ws:
        await ws.send(json.dumps({"type": "recognition_unsupported"}))
        await ws.send(json.dumps({
            "type": "start",
            "settings": {"firm": firm, "stage": stage},
            "numQuestions": num_questions,
        }))

        answered = set()
        ended = False
        while True:
            msg = json.loads(await ws.recv())
            kind = msg.get("type")

            if kind == "audio":
                # acknowledge immediately; nothing is actually played
                await ws.send(json.dumps({"type": "playback_started", "id": msg["id"]}))
                await ws.send(json.dumps({"type": "playback_ended", "id": msg["id"]}))
                continue

            if kind != "state":
                continue

            state = msg["state"]
            print(f"status={state['status']} index={state['currentIndex']}")
            if state.get("apiError"):
                print("error:", state["apiError"])
                return 1
            if state.get("finalSummary"):
                print(state["finalSummary"])
                return 0

            # one typed answer per interviewer line, follow-ups included
            turn = len(state["conversation"])
            last = state["conversation"][-1]["role"] if state["conversation"] else ""
            if state["status"] == "paused" and last == "interviewer" and turn not in answered:
                answered.add(turn)
                await ws.send(json.dumps({"type": "submit_answer", "text": ANSWER}))
            elif state["status"] == "idle" and answered and not ended:
                ended = True
                await ws.send(json.dumps({"type": "end"}))


def run():
    firm = sys.argv[1] if len(sys.argv) > 1 else "Goldman Sachs"
    sys.exit(asyncio.run(main(firm)))


if __name__ == "__main__":
    run()
