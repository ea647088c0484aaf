# tuiplus

The interactive core of a terminal system monitor that also manages local
Ollama models. The package draws no screens. It holds the parts that decide
how the interface reacts to input and what it lists:

- `tuiplus.chat`: chat messages, prompt and log building, log parsing.
- `tuiplus.models`: model records, parameter sizes read from model names,
  sorting of installed and running models.
- `tuiplus.keys`: key events and input throttles.
- `tuiplus.ui_state`: selection, sorting and focus for the process, GPU, RAM
  and service tables.
- `tuiplus.ollama_state` and `tuiplus.ollama_keys`: the state and key handling
  of the model-server view, with chat sessions that can be paused and resumed.

It has no runtime dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Chat logs

```python
from tuiplus.chat import ChatMessage, ChatRole, build_chat_log, parse_chat_log

messages = [
    ChatMessage(ChatRole.USER, "hello"),
    ChatMessage(ChatRole.ASSISTANT, "hi\nthere"),
]
text = build_chat_log(messages)
assert parse_chat_log(text) == messages
```

Each message starts on its own line with a role prefix (`Запрос: ` for the
user, `Ответ: ` for the model). Continuation lines are indented by two spaces.
The parser also accepts `Request:` and `Response:`, and drops empty messages.
`read_chat_log(path)` parses a file and returns an empty list if the file
cannot be read.

Other helpers:

- `build_chat_prompt(messages, new_prompt)` renders the conversation, the new
  request and an open answer prefix.
- `chat_message_stats(messages)` returns a `ChatStats` with the last user
  prompt, the number of answers and the number of turns.
- `normalize_model_response(text)` turns escaped `\r\n`, `\n` and `\t`
  sequences into real ones.
- `wrapped_line_count(text, width)` counts the rows the text fills when it is
  hard-wrapped at `width`.

## Model lists

```python
from tuiplus.models import OllamaModelSortColumn, parse_params_from_name, sort_ollama_models

parse_params_from_name("llama3:8b")   # (8.0, "B", "8B")
ordered = sort_ollama_models(models, OllamaModelSortColumn.PARAMS, True)
```

`sort_ollama_models` and `sort_ollama_running` return new sorted lists, and
items that compare equal keep their order. Sizes sort by unit first (M, then B,
then T) and then by value. Models whose names carry no size sort last.
Running models can also be sorted by the time their chat was paused
(`OllamaRunningSortColumn.PAUSED_AT`) or by how many answers their chat has
(`MESSAGE_COUNT`). `build_running_placeholder` makes a running-table row for a
model that is known only from a chat session.

## Keys and throttles

`KeyEvent` describes one key: a `Key`, the character for `Key.CHAR`
(`KeyEvent.of_char("n")`), a `KeyKind` (press, repeat or release) and a ctrl
flag. `Throttle(min_delay, clock)` lets an action through at most once every
`min_delay` seconds. `InputThrottles` bundles the handlers' throttles:
navigation 120 ms, horizontal navigation 180 ms, sort 200 ms, widget scroll
150 ms, view toggle 200 ms and text input 35 ms. Pass a `clock` to control
time in tests.

## Table state

`ProcessesUIState`, `GpuUIState`, `RamUIState` and `ServicesUIState` each have
a `handle_key` method. It applies a key and returns `True` if the key belongs
to that table. Arrow and page keys move the selection in steps of 1 and 10.
Letter keys choose the sort column. On the services tab, `f` cycles the status
filter through all, running and stopped, and left or right switches between
the table and the details panel. `ServicesUIState.enter_compact()` moves focus
back to the table.

## The model-server view

`OllamaUIState` holds focus, sorting, selection, the activity panel and chat
sessions. `start_chat`, `pause_chat`, `resume_chat`, `finish_chat` and
`restart_chat_from_log` manage conversations. `finish_chat` and `start_chat`
return the transcript that was ended, so the caller can store it.

`OllamaKeyHandler(state, actions, throttles)` applies keys to that state:

```python
from tuiplus.keys import InputThrottles, KeyEvent
from tuiplus.ollama_keys import OllamaKeyHandler
from tuiplus.ollama_state import OllamaUIState

handler = OllamaKeyHandler(OllamaUIState(), actions, InputThrottles())
consumed = await handler.handle_key(KeyEvent.of_char("v"), snapshot, 120, 40, False)
```

`actions` is any object that satisfies the `OllamaActions` protocol:
`remove_model`, `pull_model`, `stop_model`, `execute_command`, `run_model` and
`save_chat`. Removing, pulling and stopping run as background tasks on the
running event loop, and their failures are logged. Confirming the deletion of
a chat log calls `delete_chat_log`, which removes the log and its `.toml`
metadata file next to it.

## What this package does not do

It does not draw a terminal interface, read or watch a configuration file, or
collect CPU, GPU, memory, disk, network, process or service data. It does not
talk to a model server by itself: server calls and chat storage go through the
`OllamaActions` object you supply.