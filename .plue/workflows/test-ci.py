from plue import workflow, push, pull_request

@workflow(
    triggers=[
        push(branches=["main"]),
        pull_request(types=["opened", "synchronize"]),
    ],
    image="python:3.12",
)
def ci(ctx):
    # Install package with test extra
    ctx.run(name="install", cmd="pip install -e '.[test]'")

    # Unit tests; real-server tests skip themselves when gopls is absent
    ctx.run(name="test", cmd="pytest tests")

    return ctx.success()
