import asyncio
import logging
import os

from dotenv import load_dotenv

from bayot import AsyncJsonRpcTransport, Bug, FieldLoader, RemoteError, RpcSettings

load_dotenv()
settings = RpcSettings.from_env()
logging.basicConfig(level=settings.log_level)


def show_choices(bug, parent, field, choices):
    print(f"{field} choices after {parent} changed: {choices}")


def show_visibility(bug, parent, field, visible):
    print(f"{field} is now {'shown' if visible else 'hidden'}")


async def main():
    transport = AsyncJsonRpcTransport(settings)
    try:
        registry = await FieldLoader(transport).load()
        print(f"Loaded {len(registry)} fields")
        print(f"Products: {[v.name for v in registry.resolve('product').values]}")

        bug = Bug.draft(registry, transport, summary="Example bug filed from bayot")
        bug.choices_updated(show_choices).visibility_updated(show_visibility)
        bug.changed(lambda bug, field, value: print(f"{field} = {value!r}"))

        product = os.getenv("BAYOT_EXAMPLE_PRODUCT") or bug.choices("product")[0]
        bug.set("product", product)

        for field in registry.names():
            if bug.is_mandatory(field):
                print(f"Required: {field} (current {bug.value(field)!r})")

        print(f"Create parameters: {bug.build_create_params()}")
        if os.getenv("BAYOT_EXAMPLE_SUBMIT") != "1":
            print("Set BAYOT_EXAMPLE_SUBMIT=1 to actually file the bug")
            return

        await bug.save()
        print(f"Filed bug {bug.id}")

        bug.set("comment", "Follow-up comment")
        bug.add("cc", os.getenv("BAYOT_EXAMPLE_CC", ""))
        print(f"Update parameters: {bug.build_update_params()}")
        await bug.save()
        await bug.update()
        print(f"Confirmed state: {bug.confirmed}")
    except RemoteError as e:
        print(f"Remote call failed ({e.code}): {e.message}")
    finally:
        await transport.aclose()


if __name__ == "__main__":
    asyncio.run(main())
