from sqlalchemy.orm import declarative_base

# Shared by every model in cpops.models; init_db() creates its metadata.
Base = declarative_base()
