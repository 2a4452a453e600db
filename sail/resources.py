#!/usr/bin/env python3
# Resources Module
# Files and scripts written into the target system

KERNEL_UPDATER = """\
#!/bin/bash
# Upgrade the pinned kernel together with its matching ZFS module

INST_LINVAR=$(sed 's|.*linux|linux|' /proc/cmdline | sed 's|.img||g' | awk '{ print $1 }')
pacman -Sy --needed --noconfirm ${INST_LINVAR} ${INST_LINVAR}-headers zfs-${INST_LINVAR} zfs-utils
"""

ARCHZFS_KEY_URL = "https://archzfs.com/archzfs.gpg"
ARCHZFS_KEY_ID_URL = "https://git.io/JsfVS"
ARCHZFS_MIRRORLIST_URL = "https://git.io/Jsfw2"

ARCHZFS_REPO = """
#[archzfs-testing]
#Include = /etc/pacman.d/mirrorlist-archzfs

[archzfs]
Include = /etc/pacman.d/mirrorlist-archzfs
"""

MKINITCPIO_HOOKS = "HOOKS=(base udev autodetect modconf block keyboard zfs filesystems)"

_TIMER_UNIT = """\
[Unit]
Description=Monthly zpool {action} on %i

[Timer]
OnCalendar=monthly
AccuracySec=1h
Persistent=true

[Install]
WantedBy=multi-user.target
"""

_SERVICE_UNIT = """\
[Unit]
Description=zpool {action} on %i

[Service]
Nice=19
IOSchedulingClass=idle
KillSignal=SIGINT
ExecStart=/usr/bin/zpool {action} %i

[Install]
WantedBy=multi-user.target
"""


def maintenance_units(action):
    """Timer and service templates for a monthly `zpool <action>`, keyed by pool name"""
    return {
        f"zfs-{action}@.timer": _TIMER_UNIT.format(action=action),
        f"zfs-{action}@.service": _SERVICE_UNIT.format(action=action),
    }


ADDITIONAL_STORAGE = """\
#!/bin/bash
# Create an extra data pool and mount its datasets into a user's home
set -e

my_user=UserName
pool_name=tank0
disk=/dev/disk/by-path/virtio-pci-0000:04:00.0-part1
tmp_mpoint=/mnt/tmpmnt
dsets_mpoint_pair=(
    "Downloads /home/${my_user}/Downloads"
    "dot_cache /home/${my_user}/.cache"
)

mkdir -p "$tmp_mpoint"

zpool create \\
    -o ashift=12 \\
    -o autotrim=on \\
    -R "$tmp_mpoint" \\
    -O acltype=posixacl \\
    -O canmount=off \\
    -O compression=zstd \\
    -O dnodesize=auto \\
    -O normalization=formD \\
    -O relatime=on \\
    -O xattr=sa \\
    -O mountpoint=/ \\
    ${pool_name} \\
    ${disk}

zfs create -o canmount=off -o mountpoint=none ${pool_name}/arch
zfs create -o canmount=off -o mountpoint=none ${pool_name}/arch/DATA
zfs create -o canmount=off -o mountpoint=none ${pool_name}/arch/DATA/default

for pair in "${dsets_mpoint_pair[@]}"; do
    read -r dset mpoint <<< "$pair"

    zfs create -o mountpoint="$mpoint" -o canmount=on ${pool_name}/arch/DATA/default/"$dset"

    chown -R ${my_user}:${my_user} "$tmp_mpoint"/"$mpoint"

    echo "${pool_name}/arch/DATA/default/$dset  $mpoint zfs x-systemd.automount,noauto,zfsutil,rw,xattr,posixacl   0 0" >> /etc/fstab
done

zpool export "$pool_name"
rm -rf "$tmp_mpoint"
"""

ADD_USER = """\
#!/bin/bash
# Add a wheel user with a login shell
set -e

my_user=UserName
useradd -m -G wheel -s /bin/bash ${my_user}
passwd ${my_user}
"""

ENABLE_SERVICES = """\
#!/bin/bash
# Services that can only start once the system has booted from its own pools
set -e

systemctl enable zrepl
"""

ZFS_MOUNT_GENERATOR = """\
#!/bin/bash
# Regenerate the zfs-list cache used by zfs-mount-generator for data pools
set -e

DATA_POOL='tank0 tank1'

# tab-separated zfs properties
# see /etc/zfs/zed.d/history_event-zfs-list-cacher.sh
export \\
PROPS="name,mountpoint,canmount,atime,relatime,devices,exec\\
,readonly,setuid,nbmand,encroot,keylocation"

mkdir -p /etc/zfs/zfs-list.cache

for i in $DATA_POOL; do
  zfs list -H -t filesystem -o $PROPS -r $i > /etc/zfs/zfs-list.cache/$i
done
"""

GNOME_INSTALL = """\
#!/bin/bash
# Install the GNOME desktop and its display manager
set -e

pacman -S gnome
systemctl enable gdm.service
"""

NIX_INSTALL = """\
#!/bin/bash
# Install the nix package manager alongside pacman
set -e
my_user=UserName

pacman -S nix
systemctl enable nix-daemon.service
gpasswd -a "${my_user}" nix-users

cat <<EOF > /home/"${my_user}"/nix_channel_add.sh
nix-channel --add https://nixos.org/channels/nixpkgs-unstable
nix-channel --update
EOF

cat <<EOF > /home/"${my_user}"/home_manager_install.sh
nix-channel --add https://github.com/nix-community/home-manager/archive/master.tar.gz home-manager
nix-channel --update

export NIX_PATH=$HOME/.nix-defexpr/channels${NIX_PATH:+:}$NIX_PATH
echo "source or add this command below to your shell"
echo 'export NIX_PATH=$HOME/.nix-defexpr/channels${NIX_PATH:+:}$NIX_PATH'

nix-shell '<home-manager>' -A install
EOF

echo -e "\\nReboot as ${my_user} and execute /home/${my_user}/nix_channel_add.sh"
"""

POST_INSTALL_SCRIPTS = {
    "additional_storage": ADDITIONAL_STORAGE,
    "add_user": ADD_USER,
    "enable_services": ENABLE_SERVICES,
    "zfs_mount_generator": ZFS_MOUNT_GENERATOR,
    "gnome_install": GNOME_INSTALL,
    "nix_install": NIX_INSTALL,
}
