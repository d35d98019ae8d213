"""
Model declarations shared by the tests.

Also usable as REPLICORD_MODELS=tests.app_models.
"""


def configure_user(schema, replication):
    schema.string("name").string("steamID").integer("boxes").boolean("admin")
    replication.enable().condition(lambda peer: peer.get("admin") in (True, "true"))


def configure_ban(schema, replication):
    schema.string("steamID").text("reason").sync(False)
    replication.enable().allow_pull().condition(lambda peer: True)


def setup(context):
    context.setup_model("User", configure_user)
    context.setup_model("Ban", configure_ban)
