import marimo

__generated_with = "0.18.3"
app = marimo.App()


@app.cell
def _():
    from datetime import datetime, timezone

    from IPython.lib.pretty import pprint

    from snapvcs.impl.memory import (
        MemoryCommitGraph,
        MemoryContentStore,
        MemoryStagingArea,
    )
    return (
        MemoryCommitGraph,
        MemoryContentStore,
        MemoryStagingArea,
        datetime,
        pprint,
        timezone,
    )


@app.cell
def _(MemoryCommitGraph, MemoryContentStore, MemoryStagingArea):
    store = MemoryContentStore()
    stage = MemoryStagingArea()
    graph = MemoryCommitGraph()
    return graph, stage, store


@app.cell
def _(datetime, graph, stage, store, timezone):
    stage.stage("README", store.put(b"hello\n").unwrap())
    root = graph.create_commit(
        "initial commit", "demo", datetime.now(timezone.utc), stage.snapshot()
    ).unwrap()
    store.retain(root.snapshot.values())
    stage.clear()
    return


@app.cell
def _(datetime, graph, stage, store, timezone):
    graph.add_branch("dev")
    graph.switch_branch("dev")
    stage.stage("notes.txt", store.put(b"draft\n").unwrap())
    c1 = graph.create_commit(
        "add notes",
        "demo",
        datetime.now(timezone.utc),
        stage.apply_to(graph.head().snapshot),
    ).unwrap()
    store.retain(c1.snapshot.values())
    stage.clear()
    return


@app.cell
def _(graph, pprint):
    pprint(graph)
    pprint(list(graph.history().unwrap()))
    return


@app.cell
def _(graph, pprint, store):
    graph.switch_branch("main")
    pruned = graph.delete_branch("dev").unwrap()
    for _commit in pruned:
        store.release(_commit.snapshot.values())
    pprint(graph)
    pprint(store)
    return


if __name__ == "__main__":
    app.run()
