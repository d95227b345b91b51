"""Build filter graphs from segments, effects and transitions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from avorch.errors import CompositionError
from avorch.graph.ir import FilterGraph, FilterNode, Pad, StreamKind
from avorch.models.edit import Effect, EffectType, Segment, Transition, TransitionType
from avorch.models.profile import EncodeProfile

logger = logging.getLogger(__name__)

# (filter name, options)
FilterSpec = tuple[str, tuple[tuple[str, str], ...]]

VIDEO_OUT = Pad("outv", StreamKind.VIDEO)
AUDIO_OUT = Pad("outa", StreamKind.AUDIO)

# Blur radii are expressed for 1080p output and scaled to the target height.
REFERENCE_HEIGHT = 1080

_XFADE_TRANSITIONS = {TransitionType.CROSSFADE: "fade"}


def fmt_number(value: float) -> str:
    """Fixed-precision number text, stable across runs."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


class _Draft:
    """Accumulates nodes and hands out unique pad labels for one build."""

    def __init__(self) -> None:
        self.nodes: list[FilterNode] = []
        self._counter = 0

    def pad(self, prefix: str, kind: StreamKind) -> Pad:
        self._counter += 1
        return Pad(f"{prefix}{self._counter}", kind)

    def add(
        self,
        name: str,
        inputs: Sequence[Pad],
        outputs: Sequence[Pad],
        options: tuple[tuple[str, str], ...] = (),
    ) -> None:
        self.nodes.append(FilterNode(name, tuple(inputs), tuple(outputs), options))

    def chain(
        self,
        pad: Pad,
        filters: Sequence[FilterSpec],
        prefix: str,
        final: Pad | None = None,
    ) -> Pad:
        """Apply *filters* in order starting at *pad*; return the last output."""
        for i, (name, options) in enumerate(filters):
            is_last = i == len(filters) - 1
            out = final if (is_last and final is not None) else self.pad(prefix, pad.kind)
            self.add(name, [pad], [out], options)
            pad = out
        return pad


class FilterGraphBuilder:
    """Turns segments, effects and transitions into a FilterGraph.

    Every segment passed to :meth:`build` is one engine input whose stream
    starts at the segment's first frame (the input is seeked and limited to
    the segment's range by the command, or already cut to it), so effect
    timings are relative to zero.

    The builder holds no state between calls; identical inputs produce
    identical graphs.
    """

    def __init__(self, reference_height: int = REFERENCE_HEIGHT) -> None:
        self.reference_height = reference_height

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        segments: Sequence[Segment],
        transitions: Sequence[Transition] = (),
        *,
        with_audio: bool = True,
        profile: EncodeProfile | None = None,
    ) -> FilterGraph | None:
        """Build the graph joining *segments* in order.

        Args:
            segments: Segments in output order
            transitions: Empty for a plain concatenation, otherwise exactly
                one transition per adjacent pair
            with_audio: Whether every input carries an audio stream
            profile: Output profile, used to scale effect parameters

        Returns:
            The graph, or None when a single segment is given (no joining
            needed; callers hand the segment off as-is)

        Raises:
            CompositionError: Inconsistent segments, transitions or effects
        """
        segments = list(segments)
        transitions = list(transitions)
        if not segments:
            raise CompositionError("At least one segment is required")
        if transitions and len(transitions) != len(segments) - 1:
            raise CompositionError(
                f"{len(segments)} segments need {len(segments) - 1} transitions, "
                f"got {len(transitions)}"
            )

        # Validate everything before building anything.
        chains = [self._effect_filters(segment, profile) for segment in segments]
        for i, transition in enumerate(transitions):
            self._check_transition(transition, segments[i], segments[i + 1])

        if len(segments) == 1:
            logger.debug("Single segment %s: no graph needed", segments[0].segment_id)
            return None

        draft = _Draft()
        video_pads: list[Pad] = []
        audio_pads: list[Pad] = []
        for index, (video_filters, audio_filters) in enumerate(chains):
            video_pads.append(
                draft.chain(Pad.source(index, StreamKind.VIDEO), video_filters, f"s{index}v")
            )
            if with_audio:
                audio_pads.append(
                    draft.chain(Pad.source(index, StreamKind.AUDIO), audio_filters, f"s{index}a")
                )

        if transitions:
            self._crossfade_chain(draft, segments, transitions, video_pads, audio_pads)
        else:
            self._concat(draft, video_pads, audio_pads)

        outputs = (VIDEO_OUT, AUDIO_OUT) if with_audio else (VIDEO_OUT,)
        return FilterGraph(
            inputs=tuple(s.source_path for s in segments),
            nodes=tuple(draft.nodes),
            outputs=outputs,
        )

    def build_segment(
        self,
        segment: Segment,
        profile: EncodeProfile | None = None,
        *,
        with_audio: bool = True,
    ) -> FilterGraph | None:
        """Build the preparation graph for one segment.

        Applies the segment's effects and, when the profile has a fixed
        resolution, scales and pads to it. Returns None if there is nothing
        to apply.
        """
        video_filters, audio_filters = self._effect_filters(segment, profile)
        video_filters = list(video_filters)
        if profile is not None and profile.scales:
            video_filters.extend(_scale_filters(profile.width, profile.height))
        if not with_audio:
            audio_filters = []

        if not video_filters and not audio_filters:
            return None

        draft = _Draft()
        outputs: list[Pad] = []
        if video_filters:
            outputs.append(
                draft.chain(Pad.source(0, StreamKind.VIDEO), video_filters, "v", VIDEO_OUT)
            )
        if audio_filters:
            outputs.append(
                draft.chain(Pad.source(0, StreamKind.AUDIO), audio_filters, "a", AUDIO_OUT)
            )
        return FilterGraph(
            inputs=(segment.source_path,),
            nodes=tuple(draft.nodes),
            outputs=tuple(outputs),
        )

    def build_audio_mix(
        self,
        video_path: Path,
        audio_path: Path,
        dropout_transition: float = 3.0,
    ) -> FilterGraph:
        """Mix the audio of *audio_path* into the audio of *video_path*.

        The mix lasts as long as the video's own audio.
        """
        out = Pad("aout", StreamKind.AUDIO)
        node = FilterNode(
            "amix",
            (Pad.source(0, StreamKind.AUDIO), Pad.source(1, StreamKind.AUDIO)),
            (out,),
            (
                ("inputs", "2"),
                ("duration", "first"),
                ("dropout_transition", fmt_number(dropout_transition)),
            ),
        )
        return FilterGraph(inputs=(Path(video_path), Path(audio_path)), nodes=(node,), outputs=(out,))

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    @staticmethod
    def _concat(draft: _Draft, video_pads: list[Pad], audio_pads: list[Pad]) -> None:
        inputs: list[Pad] = []
        for i, video in enumerate(video_pads):
            inputs.append(video)
            if audio_pads:
                inputs.append(audio_pads[i])
        outputs = [VIDEO_OUT, AUDIO_OUT] if audio_pads else [VIDEO_OUT]
        draft.add(
            "concat",
            inputs,
            outputs,
            (
                ("n", str(len(video_pads))),
                ("v", "1"),
                ("a", "1" if audio_pads else "0"),
            ),
        )

    @staticmethod
    def _crossfade_chain(
        draft: _Draft,
        segments: list[Segment],
        transitions: list[Transition],
        video_pads: list[Pad],
        audio_pads: list[Pad],
    ) -> None:
        """One xfade (and acrossfade) per adjacent pair, chained left to right."""
        video = video_pads[0]
        audio = audio_pads[0] if audio_pads else None
        # Length of the output produced so far.
        length = segments[0].duration

        for i, transition in enumerate(transitions, start=1):
            last = i == len(segments) - 1
            offset = length - transition.duration

            video_out = VIDEO_OUT if last else draft.pad("xv", StreamKind.VIDEO)
            draft.add(
                "xfade",
                [video, video_pads[i]],
                [video_out],
                (
                    ("transition", _XFADE_TRANSITIONS[TransitionType(transition.type)]),
                    ("duration", fmt_number(transition.duration)),
                    ("offset", fmt_number(offset)),
                ),
            )
            video = video_out

            if audio is not None:
                audio_out = AUDIO_OUT if last else draft.pad("xa", StreamKind.AUDIO)
                draft.add(
                    "acrossfade",
                    [audio, audio_pads[i]],
                    [audio_out],
                    (("d", fmt_number(transition.duration)),),
                )
                audio = audio_out

            length = length + segments[i].duration - transition.duration

    @staticmethod
    def _check_transition(transition: Transition, before: Segment, after: Segment) -> None:
        try:
            TransitionType(transition.type)
        except ValueError:
            raise CompositionError(
                f"Unknown transition type '{transition.type}'", segment_id=after.segment_id
            ) from None
        longest = min(before.duration, after.duration)
        if transition.duration > longest:
            raise CompositionError(
                f"Transition of {transition.duration}s between {before.segment_id} and "
                f"{after.segment_id} is longer than the shorter segment ({longest}s)",
                segment_id=after.segment_id,
            )

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _effect_filters(
        self, segment: Segment, profile: EncodeProfile | None
    ) -> tuple[list[FilterSpec], list[FilterSpec]]:
        """Map a segment's effects to (video filters, audio filters)."""
        video: list[FilterSpec] = []
        audio: list[FilterSpec] = []
        for effect in segment.effects:
            v, a = self._effect_filter(effect, segment, profile)
            if v is not None:
                video.append(v)
            if a is not None:
                audio.append(a)
        return video, audio

    def _effect_filter(
        self, effect: Effect, segment: Segment, profile: EncodeProfile | None
    ) -> tuple[FilterSpec | None, FilterSpec | None]:
        try:
            kind = EffectType(effect.type)
        except ValueError:
            raise CompositionError(
                f"Unknown effect type '{effect.type}'", segment_id=segment.segment_id
            ) from None

        if kind is EffectType.BRIGHTNESS:
            value = _param(effect, segment, "value", low=-1.0, high=1.0)
            return ("eq", (("brightness", fmt_number(value)),)), None

        if kind is EffectType.CONTRAST:
            value = _param(effect, segment, "value", low=0.0, high=3.0)
            return ("eq", (("contrast", fmt_number(value)),)), None

        if kind is EffectType.SATURATION:
            value = _param(effect, segment, "value", low=0.0, high=3.0)
            return ("eq", (("saturation", fmt_number(value)),)), None

        if kind is EffectType.BLUR:
            radius = _param(effect, segment, "radius", low=0.0, high=100.0, open_low=True)
            if profile is not None and profile.height:
                radius = radius * profile.height / self.reference_height
            return ("gblur", (("sigma", fmt_number(radius)),)), None

        if kind is EffectType.GRAYSCALE:
            return ("hue", (("s", "0"),)), None

        # Fades touch both streams.
        duration = _param(effect, segment, "duration", low=0.0, high=segment.duration, open_low=True)
        if kind is EffectType.FADE_IN:
            start = 0.0
            direction = "in"
        else:
            start = segment.duration - duration
            direction = "out"
        options = (
            ("t", direction),
            ("st", fmt_number(start)),
            ("d", fmt_number(duration)),
        )
        return ("fade", options), ("afade", options)


def _param(
    effect: Effect,
    segment: Segment,
    key: str,
    *,
    low: float,
    high: float,
    open_low: bool = False,
) -> float:
    """Read a numeric effect parameter and check its range."""
    raw: Any = effect.parameters.get(key)
    if raw is None:
        raise CompositionError(
            f"Effect '{effect.type}' requires parameter '{key}'", segment_id=segment.segment_id
        )
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise CompositionError(
            f"Effect '{effect.type}' parameter '{key}' must be a number, got {raw!r}",
            segment_id=segment.segment_id,
        )
    value = float(raw)
    too_low = value <= low if open_low else value < low
    if too_low or value > high:
        bound = "(" if open_low else "["
        raise CompositionError(
            f"Effect '{effect.type}' parameter '{key}'={raw} is outside "
            f"{bound}{fmt_number(low)}, {fmt_number(high)}]",
            segment_id=segment.segment_id,
        )
    return value


def _scale_filters(width: int, height: int) -> list[FilterSpec]:
    """Fit into width x height, letterboxing the remainder."""
    return [
        ("scale", (("w", str(width)), ("h", str(height)), ("force_original_aspect_ratio", "decrease"))),
        ("pad", (("w", str(width)), ("h", str(height)), ("x", "(ow-iw)/2"), ("y", "(oh-ih)/2"))),
        ("setsar", (("sar", "1"),)),
    ]
