import pytest
import yaml

from dockform.errors import (
    InvalidArgumentError,
    InvalidResourceLimitError,
    ManifestSyntaxError,
    MissingEnvironmentVariableError,
)
from dockform.MODELS.service_definition import (
    BindMount,
    BuildConfig,
    HealthCheck,
    NamedVolume,
    ResourceRequirements,
    VolumeDefinition,
)
from dockform.PARSERS.compose_parser import ComposeParser, Interpolation


def test_parse(tmp_path):
    compose_content = {
        'version': '3.8',
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['80:80'],
                'environment': {
                    'DEBUG': 'true'
                },
                'restart': 'always'
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['db_data:/var/lib/postgresql/data']
            }
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    parser = ComposeParser()
    config = parser.parse_file(str(compose_file))

    assert config.version == '3.8'
    assert set(config.services) == {'web', 'db'}
    assert config.services['web'].image == 'nginx:latest'
    assert config.services['web'].ports == ['80:80']
    assert config.services['web'].environment['DEBUG'] == 'true'
    assert config.services['web'].restart == 'always'

    assert config.volumes == {'db_data': VolumeDefinition(name='db_data')}
    volume = config.services['db'].volumes[0]
    assert volume == NamedVolume(name='db_data:/var/lib/postgresql/data')
    assert volume.volume_name == 'db_data'
    assert volume.target == '/var/lib/postgresql/data'


def test_missing_fields_are_none():
    config = ComposeParser().parse("services:\n  bare: {}\n  empty:\n")
    assert config.version == ""
    for service in config.services.values():
        assert service.image is None
        assert service.depends_on is None
        assert service.volumes is None


def test_bind_mount_short_form():
    config = ComposeParser().parse("services:\n  app:\n    volumes:\n      - ./data:/data\n")
    assert config.services['app'].volumes == [
        BindMount(source='./data', target='/data', read_only=False)
    ]
    assert config.volumes == {}


@pytest.mark.parametrize("short", ["/srv/www:/var/www:ro", "~/conf:/etc/app:ro", "../shared:/shared:ro"])
def test_read_only_bind_short_form(short):
    config = ComposeParser().parse(f"services:\n  app:\n    volumes:\n      - {short}\n")
    source, target, _ = short.split(':')
    assert config.services['app'].volumes == [BindMount(source=source, target=target, read_only=True)]


def test_long_and_short_volume_forms_agree():
    short = ComposeParser().parse("""
services:
  app:
    volumes:
      - ./src:/app:ro
      - cache:/cache
""")
    long = ComposeParser().parse("""
services:
  app:
    volumes:
      - type: bind
        source: ./src
        target: /app
        read_only: true
      - source: cache
        target: /cache
""")
    assert short.services['app'].volumes == long.services['app'].volumes


def test_long_volume_read_only_named():
    config = ComposeParser().parse("""
services:
  app:
    volumes:
      - type: volume
        source: certs
        target: /certs
        read_only: true
""")
    assert config.services['app'].volumes == [NamedVolume(name='certs:/certs:ro')]
    assert config.services['app'].volumes[0].read_only


def test_invalid_volume_type():
    with pytest.raises(InvalidArgumentError, match="Invalid volume type: tmpfs"):
        ComposeParser().parse("""
services:
  app:
    volumes:
      - type: tmpfs
        source: x
        target: /tmp
""")


def test_top_level_volume_with_driver():
    config = ComposeParser().parse("""
services:
  db:
    volumes:
      - pgdata:/var/lib/postgresql/data
volumes:
  pgdata:
    driver: local
    driver_opts:
      type: none
      o: bind
      device: /mnt/pg
""")
    assert config.volumes['pgdata'] == VolumeDefinition(
        name='pgdata',
        driver='local',
        driver_opts={'type': 'none', 'o': 'bind', 'device': '/mnt/pg'},
    )


def test_referenced_volumes_are_collected():
    config = ComposeParser().parse("""
services:
  node:
    volumes:
      - reth_data:/data
      - ./logs:/logs
  other:
    volumes:
      - reth_data:/backup
      - keys:/keys:ro
volumes:
  declared:
""")
    assert list(config.volumes) == ['declared', 'reth_data', 'keys']
    assert config.volumes['reth_data'] == VolumeDefinition(name='reth_data')


def test_environment_list_and_map_agree():
    as_map = ComposeParser().parse("""
services:
  app:
    environment:
      A: "1"
      B: "quoted"
      C:
      D: true
      E: 5432
""")
    as_list = ComposeParser().parse("""
services:
  app:
    environment:
      - A=1
      - B="quoted"
      - C=
      - D=true
      - E=5432
""")
    expected = {'A': '1', 'B': 'quoted', 'C': '', 'D': 'true', 'E': '5432'}
    assert as_map.services['app'].environment == expected
    assert as_list.services['app'].environment == expected


def test_environment_quotes_and_whitespace():
    config = ComposeParser().parse("""
services:
  app:
    environment:
      QUOTED: '"wrapped"'
      SPACES: "  value with spaces  "
  listed:
    environment:
      - "  KEY =  spaced value  "
      - NO_EQUALS_SIGN
      - URL=http://host/?a=b
""")
    assert config.services['app'].environment == {
        'QUOTED': 'wrapped',
        'SPACES': '  value with spaces  ',
    }
    assert config.services['listed'].environment == {
        'KEY': 'spaced value',
        'URL': 'http://host/?a=b',
    }


def test_environment_wrong_shape():
    with pytest.raises(ManifestSyntaxError):
        ComposeParser().parse("services:\n  app:\n    environment: just-a-string\n")


def test_command_forms():
    config = ComposeParser().parse("""
services:
  shell:
    command: npm start
  listed:
    command: ["node", "server.js", 8080]
""")
    assert config.services['shell'].command == ['npm start']
    assert config.services['listed'].command == ['node', 'server.js', '8080']


def test_command_wrong_shape():
    with pytest.raises(ManifestSyntaxError):
        ComposeParser().parse("services:\n  app:\n    command:\n      key: value\n")


def test_depends_on_and_networks_as_mappings():
    config = ComposeParser().parse("""
services:
  web:
    depends_on:
      db:
        condition: service_healthy
      cache:
    networks:
      frontend:
        aliases: [web]
      backend:
  db:
    depends_on: [cache]
    networks: [backend]
""")
    assert config.services['web'].depends_on == ['db', 'cache']
    assert config.services['web'].networks == ['frontend', 'backend']
    assert config.services['db'].depends_on == ['cache']
    assert config.services['db'].networks == ['backend']


def test_build_and_healthcheck():
    config = ComposeParser().parse("""
services:
  api:
    build: ./api
    healthcheck:
      test: curl -f http://localhost/health
      interval: 30s
      retries: "3"
  worker:
    build:
      context: ./worker
      dockerfile: Dockerfile.prod
    healthcheck:
      test: ["CMD", "pg_isready"]
      disable: true
""")
    api = config.services['api']
    assert api.build == BuildConfig(context='./api')
    assert api.healthcheck == HealthCheck(
        test=['CMD-SHELL', 'curl -f http://localhost/health'],
        interval='30s',
        retries=3,
    )
    worker = config.services['worker']
    assert worker.build == BuildConfig(context='./worker', dockerfile='Dockerfile.prod')
    assert worker.healthcheck.test == ['CMD', 'pg_isready']
    assert worker.healthcheck.disable is True


def test_port_mappings_stay_strings():
    config = ComposeParser().parse("""
services:
  ssh:
    ports:
      - 22:22
      - 9090:9090
      - 8080
      - target: 80
        published: 8000
        protocol: tcp
""")
    assert config.services['ssh'].ports == ['22:22', '9090:9090', '8080', '8000:80/tcp']


def test_labels_forms():
    config = ComposeParser().parse("""
services:
  a:
    labels:
      com.example.tier: backend
  b:
    labels:
      - com.example.tier=backend
""")
    assert config.services['a'].labels == config.services['b'].labels == {'com.example.tier': 'backend'}


def test_resource_requirements_sources():
    config = ComposeParser().parse("""
services:
  deploy_style:
    deploy:
      resources:
        limits:
          cpus: "0.5"
          memory: 512M
        reservations:
          memory: 128M
  compose_style:
    cpus: 1.5
    mem_limit: 1G
    memswap_limit: 2G
    cpu_shares: 512
    cpuset: "0,1"
  canonical:
    mem_limit: 1G
    resource_requirements:
      memory_limit: 256M
""")
    assert config.services['deploy_style'].resource_requirements == ResourceRequirements(
        cpu_limit=0.5, memory_limit='512M', memory_reservation='128M',
    )
    compose_style = config.services['compose_style'].resource_requirements
    assert compose_style == ResourceRequirements(
        cpu_limit=1.5, memory_limit='1G', memory_swap='2G', cpu_shares=512, cpuset_cpus='0,1',
    )
    assert compose_style.to_runtime_limits() == {
        'memory': 1024 ** 3,
        'memory_swap': 2 * 1024 ** 3,
        'cpu_shares': 512,
        'cpuset_cpus': '0,1',
        'nano_cpus': 1_500_000_000,
    }
    assert config.services['canonical'].resource_requirements.memory_limit == '256M'


def test_invalid_memory_limit():
    with pytest.raises(InvalidResourceLimitError, match="Invalid memory value: 12.5G"):
        ComposeParser().parse("services:\n  app:\n    mem_limit: 12.5G\n")


def test_default_interpolation():
    content = "services:\n  web:\n    image: nginx:${VERSION:-latest}\n"
    assert ComposeParser().parse(content).services['web'].image == 'nginx:latest'
    assert ComposeParser({'VERSION': '1.21'}).parse(content).services['web'].image == 'nginx:1.21'


def test_process_environment_is_not_used(monkeypatch):
    monkeypatch.setenv('DOCKFORM_TEST_TAG', 'from-process')
    config = ComposeParser().parse("services:\n  web:\n    image: 'app:${DOCKFORM_TEST_TAG}'\n")
    assert config.services['web'].image == 'app:'


def test_without_interpolation_tokens_survive():
    config = ComposeParser(interpolate=Interpolation.NONE).parse("""
services:
  web:
    image: nginx:${VERSION:-latest}
    volumes:
      - ${DATA_DIR}:/data
""")
    web = config.services['web']
    assert web.image == 'nginx:${VERSION:-latest}'
    assert web.volumes == [NamedVolume(name='${DATA_DIR}:/data')]
    assert config.volumes == {}


SERVICE_MANIFEST = """
services:
  app:
    image: app:${TAG}
    env_file: ${ENV_DIR}/app.env
    environment:
      PORT: "8080"
      URL: http://${HOST}:${PORT}
    ports:
      - ${PORT}:80
  other:
    image: app:${TAG}
"""


def test_service_interpolation_layers():
    reads = []

    def read_env_file(path):
        reads.append(path)
        return "TAG=from-file\nPORT=9000\n"

    parser = ComposeParser(
        variables={'TAG': 'base', 'HOST': 'db', 'ENV_DIR': 'conf'},
        interpolate=Interpolation.SERVICE,
        env_file_reader=read_env_file,
    )
    config = parser.parse(SERVICE_MANIFEST)

    assert reads == ['conf/app.env']
    app = config.services['app']
    assert app.image == 'app:from-file'
    assert app.environment == {'PORT': '8080', 'URL': 'http://db:8080'}
    assert app.ports == ['8080:80']
    assert app.env_file == ['conf/app.env']
    assert config.services['other'].image == 'app:base'


def test_service_interpolation_requires_env_file_variables():
    parser = ComposeParser(
        variables={'TAG': 'base'},
        interpolate=Interpolation.SERVICE,
        env_file_reader=lambda path: "",
    )
    with pytest.raises(MissingEnvironmentVariableError, match="ENV_DIR"):
        parser.parse(SERVICE_MANIFEST)


BOOLEAN_MANIFEST = """
services:
  app:
    volumes:
      - type: bind
        source: ./src
        target: /app
        read_only: ${RO:-false}
    healthcheck:
      test: ["CMD", "true"]
      disable: ${NO_HEALTH:-off}
"""


@pytest.mark.parametrize("interpolate", [Interpolation.TEXT, Interpolation.SERVICE])
def test_substituted_booleans(interpolate):
    app = ComposeParser(interpolate=interpolate).parse(BOOLEAN_MANIFEST).services['app']
    assert app.volumes == [BindMount(source='./src', target='/app', read_only=False)]
    assert app.healthcheck.disable is False

    app = ComposeParser(
        variables={'RO': 'True', 'NO_HEALTH': 'yes'},
        interpolate=interpolate,
    ).parse(BOOLEAN_MANIFEST).services['app']
    assert app.volumes[0].read_only is True
    assert app.healthcheck.disable is True


def test_invalid_boolean():
    with pytest.raises(ManifestSyntaxError, match="read_only must be a boolean"):
        ComposeParser(variables={'RO': 'maybe'}, interpolate=Interpolation.SERVICE).parse(BOOLEAN_MANIFEST)


def test_non_ascii_digits_are_not_integers():
    with pytest.raises(ManifestSyntaxError, match="retries must be an integer"):
        ComposeParser().parse("""
services:
  app:
    healthcheck:
      test: ["CMD", "true"]
      retries: "³"
""")


@pytest.mark.parametrize("content", [
    "services: [",
    "- just\n- a list\n",
    "services:\n  - web\n",
    "services:\n  web: nginx\n",
    "services:\n  web:\n    ports: 80\n",
    "services:\n  web:\n    image: !!int abc\n",
])
def test_malformed_manifests(content):
    with pytest.raises(ManifestSyntaxError):
        ComposeParser().parse(content)


def test_empty_manifest():
    config = ComposeParser().parse("")
    assert config.services == {}
    assert config.volumes == {}


def test_yaml_round_trip():
    content = """
version: "3.8"
services:
  db:
    image: postgres:16
    environment:
      POSTGRES_PASSWORD: "secret"
      ENABLED: "true"
      EMPTY: ""
    volumes:
      - pgdata:/var/lib/postgresql/data
      - type: bind
        source: ./init
        target: /docker-entrypoint-initdb.d
        read_only: true
    healthcheck:
      test: pg_isready
      interval: 10s
      retries: 5
    cpus: 0.5
    mem_limit: 512M
  web:
    build: .
    command: ["gunicorn", "app:app"]
    depends_on: [db]
    ports: ["22:22", "8000:8000"]
    labels:
      tier: frontend
volumes:
  pgdata:
    driver: local
"""
    parser = ComposeParser()
    config = parser.parse(content)
    rendered = config.to_yaml()

    assert parser.parse(rendered) == config
    data = yaml.safe_load(rendered)
    assert data['services']['db']['volumes'] == [
        'pgdata:/var/lib/postgresql/data',
        './init:/docker-entrypoint-initdb.d:ro',
    ]
    assert 'disable' not in data['services']['db']['healthcheck']
    assert list(data) == ['version', 'services', 'volumes']
