"""Simulation control bridge and the default warehouse voice commands."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from .commands import VoiceCommand

if TYPE_CHECKING:
    from .mqtt import VoiceMqtt

LOGGER = logging.getLogger("depot-voice.simulation")

SPEED_STEPS = (0.25, 0.5, 1.0, 2.0, 4.0)
NUMBER_WORDS = ("one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten")

SpeakFn = Callable[[str], None]


class SimulationControls(Protocol):
    """Mutators exposed by the simulation state provider."""

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def reset(self) -> None: ...

    def set_speed(self, speed: float) -> None: ...

    def speed_up(self) -> None: ...

    def slow_down(self) -> None: ...

    def add_task(self) -> None: ...

    def select_robot(self, robot_id: str) -> None: ...

    def reset_camera(self) -> None: ...

    def toggle_paths(self) -> None: ...

    def toggle_grid(self) -> None: ...


class MqttSimulationControls:
    """Publish simulation mutator requests as JSON on a single command topic.

    Speed steps are tracked locally so ``speed_up``/``slow_down`` can send an
    absolute speed the dashboard applies as-is.
    """

    def __init__(
        self,
        mqtt: VoiceMqtt,
        topic: str,
        *,
        initial_speed: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.topic = topic
        self.speed = initial_speed
        self.logger = logger or LOGGER

    def _send(self, command: str, **fields: Any) -> None:
        payload: dict[str, Any] = {"command": command, **fields}
        self.logger.debug("[simulation] %s", payload)
        self.mqtt.publish_json(self.topic, payload)

    def play(self) -> None:
        self._send("play")

    def pause(self) -> None:
        self._send("pause")

    def stop(self) -> None:
        self._send("stop")

    def reset(self) -> None:
        self.speed = 1.0
        self._send("reset")

    def set_speed(self, speed: float) -> None:
        self.speed = max(SPEED_STEPS[0], min(SPEED_STEPS[-1], speed))
        self._send("set_speed", speed=self.speed)

    def speed_up(self) -> None:
        faster = next((step for step in SPEED_STEPS if step > self.speed), SPEED_STEPS[-1])
        self.set_speed(faster)

    def slow_down(self) -> None:
        slower = next((step for step in reversed(SPEED_STEPS) if step < self.speed), SPEED_STEPS[0])
        self.set_speed(slower)

    def add_task(self) -> None:
        self._send("add_task")

    def select_robot(self, robot_id: str) -> None:
        self._send("select_robot", robot_id=robot_id)

    def reset_camera(self) -> None:
        self._send("reset_camera")

    def toggle_paths(self) -> None:
        self._send("toggle_paths")

    def toggle_grid(self) -> None:
        self._send("toggle_grid")


def _respond(action: Callable[[], None], speak: SpeakFn | None, response: str) -> Callable[[], None]:
    def _run() -> None:
        action()
        if speak:
            speak(response)

    return _run


def robot_id(index: int) -> str:
    return f"robot-{index:02d}"


def build_default_commands(
    sim: SimulationControls,
    speak: SpeakFn | None = None,
    *,
    robot_count: int = 10,
) -> list[VoiceCommand]:
    """Commands the dashboard registers, most specific first.

    Registration order is the tie-break, so the bare ``stop``/``reset`` patterns
    are anchored and view commands that mention "reset" are checked first.
    """
    commands = [
        VoiceCommand(
            name="reset camera",
            patterns=(r"\breset (the )?(camera|view)\b", r"\bcenter (the )?view\b"),
            action=_respond(sim.reset_camera, speak, "Camera reset"),
            category="view",
            description="Return the camera to the default view",
        ),
        VoiceCommand(
            name="start simulation",
            patterns=(r"^(start|play|resume|go)$", r"\b(start|play|resume|run) (the )?simulation\b"),
            action=_respond(sim.play, speak, "Simulation started"),
            category="simulation",
            description="Start or resume the simulation",
        ),
        VoiceCommand(
            name="pause simulation",
            patterns=(r"^(pause|hold|wait)$", r"\bpause (the )?simulation\b"),
            action=_respond(sim.pause, speak, "Simulation paused"),
            category="simulation",
            description="Pause the simulation",
        ),
        VoiceCommand(
            name="stop simulation",
            patterns=(r"^(stop|halt)$", r"\b(stop|halt) (the )?simulation\b"),
            action=_respond(sim.stop, speak, "Simulation stopped"),
            category="simulation",
            description="Stop the simulation",
        ),
        VoiceCommand(
            name="reset simulation",
            patterns=(r"^reset$", r"\b(reset|restart) (the )?(simulation|warehouse)\b"),
            action=_respond(sim.reset, speak, "Simulation reset"),
            category="simulation",
            description="Reset robots, tasks and metrics",
        ),
        VoiceCommand(
            name="speed up",
            patterns=(r"\b(speed up|faster|increase (the )?speed)\b",),
            action=_respond(sim.speed_up, speak, "Speeding up"),
            category="simulation",
            description="Increase simulation speed one step",
        ),
        VoiceCommand(
            name="slow down",
            patterns=(r"\b(slow down|slower|decrease (the )?speed)\b",),
            action=_respond(sim.slow_down, speak, "Slowing down"),
            category="simulation",
            description="Decrease simulation speed one step",
        ),
        VoiceCommand(
            name="normal speed",
            patterns=(r"\b(normal|default|regular) speed\b",),
            action=_respond(lambda: sim.set_speed(1.0), speak, "Speed reset to normal"),
            category="simulation",
            description="Run the simulation at normal speed",
        ),
        VoiceCommand(
            name="add task",
            patterns=(r"\b(add|create|new) (a )?(random )?task\b",),
            action=_respond(sim.add_task, speak, "Task added"),
            category="task",
            description="Queue a new random pick task",
        ),
        VoiceCommand(
            name="toggle paths",
            patterns=(r"\b(show|hide|toggle) (the )?(robot )?paths?\b",),
            action=_respond(sim.toggle_paths, speak, "Paths toggled"),
            category="view",
            description="Show or hide planned robot paths",
        ),
        VoiceCommand(
            name="toggle grid",
            patterns=(r"\b(show|hide|toggle) (the )?grid\b",),
            action=_respond(sim.toggle_grid, speak, "Grid toggled"),
            category="view",
            description="Show or hide the warehouse grid",
        ),
    ]

    for index in range(1, robot_count + 1):
        spoken = [str(index)]
        if index <= len(NUMBER_WORDS):
            spoken.append(NUMBER_WORDS[index - 1])
        alternatives = "|".join(spoken)
        target = robot_id(index)
        commands.append(
            VoiceCommand(
                name=f"select robot {index}",
                patterns=(rf"\b(select|focus( on)?|follow|show) robot ({alternatives})$",),
                action=_respond(lambda target=target: sim.select_robot(target), speak, f"Robot {index} selected"),
                category="robot",
                description=f"Focus the view on {target}",
            )
        )
    return commands
