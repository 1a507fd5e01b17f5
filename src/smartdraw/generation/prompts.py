"""Prompts for generating Excalidraw element skeletons."""

from __future__ import annotations

SYSTEM_PROMPT = """\
## Task

Turn the user's request into an Excalidraw diagram described as an \
ExcalidrawElementSkeleton JSON array. Use binding, containment, grouping and \
framing to produce a clear, well laid out diagram.

## Input

A request: an instruction, an article to visualise, or an image to analyse and convert.

## Output

Only the JSON array. No prose before or after it.

```
[
  {"type": "rectangle", "x": 100, "y": 200, "width": 180, "height": 80,
   "backgroundColor": "#e3f2fd", "strokeColor": "#1976d2"}
]
```

## Images

If an image is attached: identify its visual elements, text, structure and \
relationships, recognise the diagram type, and reproduce its content faithfully.

## Rules

- Arrows must be bound to the elements they connect (use `start`/`end` with an `id`).
- Plan coordinates first; leave generous spacing so elements never overlap.
- Keep elements of the same role at similar sizes.
- Stay faithful to the source content; do not invent facts.
- Use 2-4 main colours and leave whitespace.
- Escape double quotes inside string values.

## Element reference

1. rectangle / ellipse / diamond: required `type`, `x`, `y`; optional `width`, \
`height`, `strokeColor`, `backgroundColor`, `strokeWidth`, `strokeStyle` \
(solid|dashed|dotted), `fillStyle` (hachure|solid|zigzag|cross-hatch), \
`roughness`, `opacity`, `angle`, `roundness`, `locked`, `link`. Give \
`label.text` to put text inside; the container sizes itself when no \
width/height is given.
2. text: required `type`, `x`, `y`, `text`; optional `fontSize`, `fontFamily` \
(1|2|3), `strokeColor`, `opacity`, `angle`, `textAlign`, `verticalAlign`. \
Do not give width/height.
3. line: required `type`, `x`, `y`; optional `width`, `height`, `strokeColor`, \
`strokeWidth`, `strokeStyle`, `polygon`. Lines do not bind.
4. arrow: required `type`, `x`, `y`; optional `width`, `height`, \
`strokeColor`, `strokeWidth`, `strokeStyle`, `elbowed`, `startArrowhead` / \
`endArrowhead` (arrow, bar, circle, circle_outline, triangle, \
triangle_outline, diamond, diamond_outline), `label.text`. `start` / `end` \
take either `{"id": ...}` of an existing element or `{"type": ...}` \
(rectangle, ellipse, diamond, text) to create one. Never give `points`.
5. freedraw: required `type`, `x`, `y`; optional `strokeColor`, `strokeWidth`, `opacity`.
6. image: required `type`, `x`, `y`, `fileId`; optional `width`, `height`, `scale`, `crop`.
7. frame: required `type`, `children` (element ids); optional `x`, `y`, \
`width`, `height`, `name`. Bounds default to the children plus 10px padding.
8. Common: `groupIds` groups elements, `locked: true` prevents edits, `link` adds a hyperlink.

## Example: binding by id

```json
[
  {"type": "ellipse", "id": "ellipse-1", "x": 390, "y": 356, "width": 150, "height": 150},
  {"type": "diamond", "id": "diamond-1", "x": -30, "y": 380, "width": 100},
  {"type": "arrow", "x": 60, "y": 420, "width": 330,
   "start": {"id": "diamond-1"}, "end": {"id": "ellipse-1"}}
]
```
"""

CHART_TYPE_NAMES = {
    "auto": "Automatic",
    "flowchart": "Flowchart",
    "mindmap": "Mind map",
    "orgchart": "Org chart",
    "sequence": "Sequence diagram",
    "class": "UML class diagram",
    "er": "ER diagram",
    "gantt": "Gantt chart",
    "timeline": "Timeline",
    "tree": "Tree diagram",
    "network": "Network topology",
    "architecture": "Architecture diagram",
    "dataflow": "Data flow diagram",
    "state": "State diagram",
    "swimlane": "Swimlane diagram",
    "concept": "Concept map",
    "fishbone": "Fishbone diagram",
    "swot": "SWOT analysis",
    "pyramid": "Pyramid",
    "funnel": "Funnel",
    "venn": "Venn diagram",
    "matrix": "Matrix",
    "infographic": "Infographic",
}

CHART_VISUAL_SPECS = {
    "flowchart": (
        "- Start/end: ellipse; steps: rectangle; decisions: diamond\n"
        "- Connect nodes with bound arrows\n"
        "- Flow top-to-bottom or left-to-right\n"
        "- Blue as the main colour, orange for decisions"
    ),
    "mindmap": (
        "- Central topic: ellipse; branches: rectangle\n"
        "- Show hierarchy with size and colour depth\n"
        "- Radial layout, branches spread evenly\n"
        "- One colour family per main branch"
    ),
    "orgchart": (
        "- Rectangles for people or positions\n"
        "- Strict top-down tree\n"
        "- Vertical arrows between levels"
    ),
    "sequence": (
        "- Participants: rectangles along the top\n"
        "- Lifelines: dashed lines downward\n"
        "- Messages: labelled arrows, ordered top to bottom"
    ),
    "class": (
        "- Classes: rectangles with name, attributes and methods\n"
        "- Inheritance: triangle_outline arrowheads; association: plain arrows\n"
        "- Parents above children"
    ),
    "er": (
        "- Entities: rectangles; attributes: ellipses; relationships: diamonds\n"
        "- Label connectors with cardinality (1, N, M)"
    ),
    "timeline": (
        "- A line as the time axis\n"
        "- Ellipses mark events, text labels beside them"
    ),
    "architecture": (
        "- Layers as frames or large rectangles\n"
        "- Components as labelled rectangles inside their layer\n"
        "- Arrows for calls and data flow"
    ),
    "state": (
        "- States: rounded rectangles; initial/final: small ellipses\n"
        "- Transitions: labelled arrows"
    ),
    "swimlane": (
        "- One lane per actor: wide rectangles stacked vertically\n"
        "- Steps inside their lane, arrows across lanes"
    ),
}


def build_user_prompt(
    user_input: str,
    chart_type: str = "auto",
    files: list[dict] | None = None,
) -> str:
    """Assemble the user message: chart guidance, attached files, then the request."""
    parts: list[str] = []
    if chart_type and chart_type != "auto" and chart_type in CHART_TYPE_NAMES:
        name = CHART_TYPE_NAMES[chart_type]
        parts.append(f"Draw an Excalidraw diagram of type **{name}** ({chart_type}).")
        conventions = CHART_VISUAL_SPECS.get(chart_type)
        if conventions:
            parts.append(f"### {name} visual conventions\n{conventions}")
    else:
        options = "\n".join(
            f"- {name} ({key})" for key, name in CHART_TYPE_NAMES.items() if key != "auto"
        )
        parts.append(
            "Choose the one or more diagram types that best present the request, "
            "then draw the Excalidraw diagram.\n\n## Available types\n" + options
        )

    if files:
        parts.append("## Reference files")
        for f in files:
            parts.append(f"### File: {f.get('name', 'untitled')}\n```\n{f.get('content', '')}\n```")

    parts.append(f"Request:\n{user_input}")
    return "\n\n".join(parts)
