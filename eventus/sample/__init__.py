"""A sample product domain: aggregate, commands, read model, query and projection."""